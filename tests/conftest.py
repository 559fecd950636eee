"""Shared pytest fixtures for the MediaNest API test suite."""

from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from kombu import Connection

from medianest.api.deps import Services
from medianest.core.config import Settings
from medianest.core.metrics import PrometheusMetrics
from medianest.main import app
from medianest.services.publisher import BrokerPublisher
from medianest.services.sequence import SequenceGenerator
from medianest.services.status_cache import StatusCache
from medianest.services.status_store import StatusStore
from fakes import FakeCollection, FakeRedis

# ── Settings ────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    """Settings with broker names unique to the test.

    The kombu memory transport keeps queues per process, so unique
    names keep tests from reading each other's messages.
    """
    suffix = uuid.uuid4().hex[:8]
    return Settings(
        _env_file=None,
        EXCHANGE_NAME=f"media_exchange_{suffix}",
        QUEUE_NAME=f"media_queue_{suffix}",
        ROUTING_KEY=f"media_key_{suffix}",
        DEAD_LETTER_EXCHANGE=f"dlx_media_exchange_{suffix}",
        DEAD_LETTER_QUEUE=f"dlq_media_queue_{suffix}",
        STORE_READ_TIMEOUT=0.5,
        PUBLISH_TIMEOUT=2.0,
    )


@pytest.fixture
def metrics() -> PrometheusMetrics:
    """Metrics on a fresh registry."""
    return PrometheusMetrics()


# ── Backing-service fakes ──────────────────────────────────────────────────


@pytest.fixture
def items_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def counters_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def broker_connection():
    """kombu connection on the in-memory transport."""
    conn = Connection("memory://")
    yield conn
    conn.release()


class SleepRecorder:
    """Replacement for ``asyncio.sleep`` that records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


# ── Services ───────────────────────────────────────────────────────────────


@pytest.fixture
def sequence(counters_collection: FakeCollection) -> SequenceGenerator:
    return SequenceGenerator(counters_collection)


@pytest.fixture
def store(
    items_collection: FakeCollection,
    metrics: PrometheusMetrics,
) -> StatusStore:
    return StatusStore(items_collection, read_timeout=0.5, metrics=metrics)


@pytest.fixture
def cache(fake_redis: FakeRedis, metrics: PrometheusMetrics) -> StatusCache:
    return StatusCache(fake_redis, ttl=900, stale_after=840, metrics=metrics)


@pytest.fixture
def publisher(
    settings: Settings,
    broker_connection: Connection,
    metrics: PrometheusMetrics,
    sleep_recorder: SleepRecorder,
) -> BrokerPublisher:
    return BrokerPublisher(
        settings,
        connection=broker_connection,
        metrics=metrics,
        sleep=sleep_recorder,
    )


@pytest.fixture
def services(
    sequence: SequenceGenerator,
    store: StatusStore,
    cache: StatusCache,
    publisher: BrokerPublisher,
    metrics: PrometheusMetrics,
) -> Services:
    return Services(
        sequence=sequence,
        store=store,
        cache=cache,
        publisher=publisher,
        metrics=metrics,
    )


# ── HTTP client ─────────────────────────────────────────────────────────────


@pytest.fixture
async def client(services: Services) -> AsyncClient:  # type: ignore[misc]
    """
    Yield an async HTTP client bound to the FastAPI app.

    The lifespan does not run under ``ASGITransport``; the test
    services container is installed on ``app.state`` instead.

    Usage::

        async def test_something(client: AsyncClient):
            response = await client.get("/api/v1/health")
    """
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
    del app.state.services
