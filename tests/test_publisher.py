"""Tests for the RabbitMQ job publisher.

Covers:
- Idempotent topology bootstrap (kombu ``memory://`` transport).
- Message body, properties and headers on a real round-trip.
- Retry schedule (2 s, 4 s) and budget exhaustion.
- Conflicting declarations and unreachable brokers.
- Health reporting, detached publishes and shutdown.
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from amqp.exceptions import PreconditionFailed
from kombu import Exchange, Queue
from kombu.exceptions import OperationalError

from medianest.core.errors import PublishFailed
from medianest.schemas.messages import QueueMessage
from medianest.services.publisher import (
    BrokerPublisher,
    MessageReturned,
    message_id_for,
)

_TS = datetime(2025, 8, 29, 13, 4, 30, tzinfo=timezone.utc)


def _message(item_id: int = 1) -> QueueMessage:
    return QueueMessage(id=item_id, locator=f"/media/{item_id}.mp4", timestamp=_TS)


def _consume_one(connection, settings):
    queue = Queue(
        settings.QUEUE_NAME,
        exchange=Exchange(settings.EXCHANGE_NAME, type="direct"),
        routing_key=settings.ROUTING_KEY,
    )
    channel = connection.channel()
    try:
        return queue(channel).get(no_ack=True)
    finally:
        channel.close()


# ── Bootstrap ───────────────────────────────────────────────


class TestBootstrap:
    """Topology declaration."""

    @pytest.mark.asyncio
    async def test_bootstrap_twice_is_safe(self, publisher):
        assert await publisher.bootstrap() is True
        assert await publisher.bootstrap() is True

    def test_topology_order_and_arguments(self, publisher, settings):
        dlx, dlq, exchange, queue = publisher.topology

        assert dlx.name == settings.DEAD_LETTER_EXCHANGE
        assert dlx.type == "direct"
        assert dlq.routing_key == settings.DEAD_LETTER_QUEUE
        assert exchange.name == settings.EXCHANGE_NAME
        assert queue.routing_key == settings.ROUTING_KEY
        assert queue.durable is True
        assert queue.queue_arguments == {
            "x-dead-letter-exchange": settings.DEAD_LETTER_EXCHANGE,
            "x-dead-letter-routing-key": settings.DEAD_LETTER_QUEUE,
            "x-message-ttl": 300_000,
            "x-max-length": 10_000,
            "x-overflow": "drop-head",
            "x-single-active-consumer": True,
        }

    @pytest.mark.asyncio
    async def test_unreachable_broker_never_raises(self, settings):
        connection = MagicMock()
        connection.connection_errors = ()
        connection.channel_errors = ()
        connection.ensure_connection.side_effect = OperationalError("refused")
        publisher = BrokerPublisher(settings, connection=connection)

        assert await publisher.bootstrap() is False
        assert publisher.is_healthy() is False

    @pytest.mark.asyncio
    async def test_conflicting_declaration_reopens_channel(self, settings):
        channel = MagicMock()
        channel.queue_declare.side_effect = [
            None,
            PreconditionFailed("inequivalent arg 'x-message-ttl'"),
        ]
        connection = MagicMock()
        connection.connection_errors = ()
        connection.channel_errors = (PreconditionFailed,)
        connection.channel.return_value = channel
        publisher = BrokerPublisher(settings, connection=connection)

        assert await publisher.bootstrap() is True
        assert connection.channel.call_count == 2
        channel.close.assert_called_once()


# ── Round trip ──────────────────────────────────────────────


class TestPublishRoundTrip:
    """Messages as the worker receives them."""

    @pytest.mark.asyncio
    async def test_body_and_headers(self, publisher, broker_connection, settings):
        await publisher.bootstrap()

        correlation_id = await publisher.publish(_message(7))

        received = _consume_one(broker_connection, settings)
        assert received is not None
        assert received.payload == {
            "id": 7,
            "locator": "/media/7.mp4",
            "timestamp": "2025-08-29T13:04:30Z",
        }
        assert received.content_type == "application/json"
        assert received.headers["source"] == settings.MESSAGE_SOURCE
        assert received.headers["timestamp"] == _TS.isoformat()
        assert received.headers["retry-count"] == 0
        assert received.properties["correlation_id"] == correlation_id
        assert received.properties["message_id"] == "item-7-20250829130430"

    @pytest.mark.asyncio
    async def test_publish_declares_topology_when_needed(
        self, publisher, broker_connection, settings
    ):
        """No explicit bootstrap: the first publish declares."""
        await publisher.publish(_message(1))
        assert _consume_one(broker_connection, settings) is not None

    @pytest.mark.asyncio
    async def test_correlation_id_format(self, publisher):
        correlation_id = await publisher.publish(_message(3))
        prefix, item_id, token = correlation_id.split("-")
        assert (prefix, item_id) == ("item", "3")
        assert len(token) == 32

    @pytest.mark.asyncio
    async def test_records_metrics(self, publisher, metrics):
        await publisher.publish(_message())
        assert metrics.value("publish_attempts") == 1
        assert metrics.registry.get_sample_value("medianest_publish_seconds_count") == 1

    def test_message_id(self):
        assert message_id_for(_message(12)) == "item-12-20250829130430"


# ── Retries ─────────────────────────────────────────────────


class TestRetryPolicy:
    """Exponential backoff under tenacity."""

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, publisher, sleep_recorder, metrics):
        with patch.object(
            publisher,
            "_publish_once",
            side_effect=[OSError("reset"), OSError("reset"), None],
        ) as publish_once:
            await publisher.publish(_message())

        assert publish_once.call_count == 3
        assert sleep_recorder.delays == [2, 4]
        assert metrics.value("publish_retries") == 2
        retry_counts = [c.args[1] for c in publish_once.call_args_list]
        assert retry_counts == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises(self, publisher, sleep_recorder, metrics):
        with patch.object(
            publisher,
            "_publish_once",
            side_effect=OSError("reset"),
        ) as publish_once:
            with pytest.raises(PublishFailed) as exc_info:
                await publisher.publish(_message())

        assert publish_once.call_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, OSError)
        assert sleep_recorder.delays == [2, 4]
        assert metrics.value("publish_failures") == 1

    @pytest.mark.asyncio
    async def test_same_correlation_id_across_attempts(self, publisher):
        with patch.object(
            publisher,
            "_publish_once",
            side_effect=[OSError("reset"), None],
        ) as publish_once:
            correlation_id = await publisher.publish(_message())

        assert {c.args[2] for c in publish_once.call_args_list} == {correlation_id}

    @pytest.mark.asyncio
    async def test_unroutable_return_is_retried(self, publisher, sleep_recorder):
        with patch.object(
            publisher,
            "_publish_once",
            side_effect=[MessageReturned("no route"), None],
        ):
            await publisher.publish(_message())
        assert sleep_recorder.delays == [2]

    @pytest.mark.asyncio
    async def test_slow_attempt_is_awaited_not_repeated(
        self, publisher, settings, sleep_recorder, metrics
    ):
        """An attempt past the timeout still decides the outcome."""
        settings.PUBLISH_TIMEOUT = 0.05
        published: list[int] = []

        def slow_publish(*args) -> None:
            time.sleep(0.2)
            published.append(args[1])

        with patch.object(publisher, "_publish_once", side_effect=slow_publish):
            await publisher.publish(_message())

        assert published == [0]
        assert sleep_recorder.delays == []
        assert metrics.value("publish_timeouts") == 1

    @pytest.mark.asyncio
    async def test_nothing_published_after_failure_is_reported(
        self, publisher, settings
    ):
        """Slow failing attempts never overlap or finish late."""
        settings.PUBLISH_TIMEOUT = 0.05
        finished: list[int] = []
        running = threading.Semaphore(1)

        def slow_failure(*args) -> None:
            assert running.acquire(blocking=False), "attempts overlapped"
            try:
                time.sleep(0.1)
                finished.append(args[1])
            finally:
                running.release()
            raise OSError("connection reset")

        with patch.object(publisher, "_publish_once", side_effect=slow_failure):
            with pytest.raises(PublishFailed) as exc_info:
                await publisher.publish(_message())
            at_failure = list(finished)
            await asyncio.sleep(0.3)

        assert exc_info.value.attempts == 3
        assert at_failure == [0, 1, 2]
        assert finished == at_failure

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self, publisher, sleep_recorder):
        with patch.object(
            publisher,
            "_publish_once",
            side_effect=ValueError("cannot serialise"),
        ) as publish_once:
            with pytest.raises(PublishFailed) as exc_info:
                await publisher.publish(_message())

        assert publish_once.call_count == 1
        assert exc_info.value.attempts == 1
        assert sleep_recorder.delays == []


# ── Health / detached / close ───────────────────────────────


class TestLifecycle:
    """Health flag, detached publishing and shutdown."""

    @pytest.mark.asyncio
    async def test_health_follows_channel(self, publisher):
        assert publisher.is_healthy() is False
        await publisher.bootstrap()
        assert publisher.is_healthy() is True
        await publisher.close()
        assert publisher.is_healthy() is False

    @pytest.mark.asyncio
    async def test_publish_detached(self, publisher, broker_connection, settings):
        task = publisher.publish_detached(_message(9))

        correlation_id = await task

        assert correlation_id.startswith("item-9-")
        assert _consume_one(broker_connection, settings).payload["id"] == 9

    @pytest.mark.asyncio
    async def test_detached_failure_is_contained(self, publisher):
        with patch.object(publisher, "_publish_once", side_effect=ValueError("bad")):
            task = publisher.publish_detached(_message())
            with pytest.raises(PublishFailed):
                await task

    @pytest.mark.asyncio
    async def test_close_waits_for_detached(self, publisher):
        task = publisher.publish_detached(_message(4))
        await publisher.close()
        assert task.done()
