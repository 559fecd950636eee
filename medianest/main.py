"""
FastAPI entry point.

The application exposes (prefix ``/api/v1``):

* ``POST /items``                      register an upload, enqueue its job
* ``GET  /items/{id}``                 full item record
* ``GET  /items/{id}/status``          cached status lookup
* ``GET  /items/{id}/results``         worker detections
* ``PUT  /items/{id}/status``          worker status callback
* ``POST /items/{id}/results``         worker results callback
* ``GET  /health``                     liveness probe
* ``GET  /health/dependencies``        MongoDB / RabbitMQ / Redis readiness
* ``GET  /metrics``                    Prometheus exposition
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medianest.api.deps import Services
from medianest.api.routes import health, items, worker
from medianest.core.config import get_settings, get_version
from medianest.core.errors import (
    ConflictError,
    NotFoundError,
    PublishFailed,
    TransientInfraError,
    ValidationError,
)
from medianest.core.metrics import PrometheusMetrics
from medianest.core.mongo import close_mongo_client, get_database
from medianest.core.redis import close_redis_pool, get_redis_client
from medianest.logging_config import request_id_var, setup_logging
from medianest.services.publisher import BrokerPublisher
from medianest.services.sequence import SequenceGenerator
from medianest.services.status_cache import StatusCache
from medianest.services.status_store import StatusStore

# ── Logging ─────────────────────────────────────────────────────────────────

settings = get_settings()
setup_logging(level=settings.LOG_LEVEL, json_format=not settings.DEBUG)
logger = logging.getLogger(__name__)


# ── Wiring ──────────────────────────────────────────────────────────────────


def build_services() -> Services:
    """Create the process-wide collaborators from settings."""
    metrics = PrometheusMetrics()
    db = get_database(settings)
    return Services(
        sequence=SequenceGenerator(db[settings.MONGO_COUNTERS_COLLECTION]),
        store=StatusStore(
            db[settings.MONGO_ITEMS_COLLECTION],
            read_timeout=settings.STORE_READ_TIMEOUT,
            metrics=metrics,
        ),
        cache=StatusCache(
            get_redis_client(settings),
            ttl=settings.CACHE_TTL,
            stale_after=settings.CACHE_STALE_AFTER,
            enabled=settings.CACHE_ENABLED,
            metrics=metrics,
        ),
        publisher=BrokerPublisher(settings, metrics=metrics),
        metrics=metrics,
    )


# ── Lifespan ────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared clients on startup and release them on shutdown."""
    logger.info("Starting %s", settings.APP_NAME)
    services = build_services()
    app.state.services = services
    await services.store.ensure_indexes()
    await services.publisher.bootstrap()
    try:
        yield
    finally:
        logger.info("Shutting down %s", settings.APP_NAME)
        await services.publisher.close()
        await close_redis_pool()
        await close_mongo_client()


# ── App factory ─────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Media ingestion API: sequential item ids, durable job hand-off "
        "over RabbitMQ and cached status lookups."
    ),
    version=get_version(),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    root_path=settings.ROOT_PATH,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag logs and the response with ``X-Request-ID``.

    A client-supplied id is echoed back; otherwise one is generated.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(items.router, prefix=settings.API_V1_STR)
app.include_router(worker.router, prefix=settings.API_V1_STR)
app.include_router(health.router, prefix=settings.API_V1_STR)


# ── Error mapping ───────────────────────────────────────────────────────────


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def _validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
    return _error(422, exc)


@app.exception_handler(NotFoundError)
async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(ConflictError)
async def _conflict(_request: Request, exc: ConflictError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(PublishFailed)
async def _publish_failed(_request: Request, exc: PublishFailed) -> JSONResponse:
    return _error(503, exc)


@app.exception_handler(TransientInfraError)
async def _unavailable(_request: Request, exc: TransientInfraError) -> JSONResponse:
    logger.error("Backing service unavailable: %s", exc)
    return _error(503, exc)
