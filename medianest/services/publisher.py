"""
Job hand-off to RabbitMQ.

``BrokerPublisher`` owns one kombu connection and one confirm-mode
channel.  Topology (dead-letter exchange and queue, main exchange,
main queue) is declared idempotently at startup and again after any
channel loss or unroutable return, so a broker restart or a deleted
queue heals on the next publish.

kombu is synchronous: each publish attempt runs on a worker thread
(``asyncio.to_thread``) and is bounded inside kombu by the socket and
confirm timeouts.  An attempt that outlives ``PUBLISH_TIMEOUT`` is
logged and still awaited, never abandoned.  Attempts are driven by
``tenacity`` with exponential backoff (2 s, then 4 s).

Usage::

    publisher = BrokerPublisher(settings, metrics=metrics)
    await publisher.bootstrap()
    correlation_id = await publisher.publish(message)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from kombu import Connection, Exchange, Producer, Queue
from kombu.exceptions import OperationalError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from medianest.core.config import Settings, get_settings
from medianest.core.constants import (
    CONTENT_TYPE_JSON,
    HEADER_RETRY_COUNT,
    HEADER_SOURCE,
    HEADER_TIMESTAMP,
)
from medianest.core.errors import PublishFailed
from medianest.core.metrics import MetricsSink, NullMetrics
from medianest.schemas.messages import QueueMessage

logger = logging.getLogger(__name__)

_PERSISTENT: int = 2


class MessageReturned(Exception):
    """The broker returned a ``mandatory`` message as unroutable."""


def correlation_id_for(item_id: int) -> str:
    """Unique correlation id for one publish of *item_id*."""
    return f"item-{item_id}-{uuid.uuid4().hex}"


def message_id_for(message: QueueMessage) -> str:
    """Stable message id: ``item-<id>-<yyyymmddHHMMSS>``."""
    return f"item-{message.id}-{message.timestamp:%Y%m%d%H%M%S}"


class BrokerPublisher:
    """Durable, confirmed publication of job messages.

    Args:
        settings: Broker names and limits (defaults to the cached
            application settings).
        connection: kombu ``Connection`` override (tests use
            ``memory://``).
        metrics: Metrics sink.
        sleep: Awaitable used between attempts; injectable so
            tests can record the backoff without waiting.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        connection: Connection | None = None,
        metrics: MetricsSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        s = self._settings
        self._connection = connection or Connection(
            s.BROKER_URL,
            transport_options={"confirm_publish": True},
            connect_timeout=s.PUBLISH_TIMEOUT,
        )
        self._metrics = metrics or NullMetrics()
        self._sleep = sleep

        # kombu channels are not thread-safe; attempts run on
        # worker threads and take turns on the shared channel.
        self._lock = threading.Lock()
        self._channel: Any = None
        self._producer: Producer | None = None
        self._declared = False
        self._returned: list[str] = []
        self._pending: set[asyncio.Task[str]] = set()

        self._dead_letter_exchange = Exchange(
            s.DEAD_LETTER_EXCHANGE,
            type="direct",
            durable=True,
        )
        self._dead_letter_queue = Queue(
            s.DEAD_LETTER_QUEUE,
            exchange=self._dead_letter_exchange,
            routing_key=s.DEAD_LETTER_QUEUE,
            durable=True,
        )
        self._exchange = Exchange(s.EXCHANGE_NAME, type="direct", durable=True)
        self._queue = Queue(
            s.QUEUE_NAME,
            exchange=self._exchange,
            routing_key=s.ROUTING_KEY,
            durable=True,
            queue_arguments={
                "x-dead-letter-exchange": s.DEAD_LETTER_EXCHANGE,
                "x-dead-letter-routing-key": s.DEAD_LETTER_QUEUE,
                "x-message-ttl": s.QUEUE_MESSAGE_TTL_MS,
                "x-max-length": s.QUEUE_MAX_LENGTH,
                "x-overflow": "drop-head",
                "x-single-active-consumer": True,
            },
        )

        self._failures: tuple[type[BaseException], ...] = (
            OperationalError,
            OSError,
            *self._connection.connection_errors,
            *self._connection.channel_errors,
        )
        self._retryable: tuple[type[BaseException], ...] = (
            *self._failures,
            TimeoutError,
            MessageReturned,
        )

    # ── Topology ────────────────────────────────────────────

    @property
    def topology(self) -> tuple[Any, ...]:
        """Entities in declaration order."""
        return (
            self._dead_letter_exchange,
            self._dead_letter_queue,
            self._exchange,
            self._queue,
        )

    async def bootstrap(self) -> bool:
        """Declare the topology.  Safe to call repeatedly.

        Never raises: on connection failure the error is logged and
        the topology is declared again before the next publish.

        Returns:
            ``True`` when every declaration was attempted.
        """
        try:
            await asyncio.to_thread(self._bootstrap_sync)
        except Exception as exc:
            logger.warning(
                "Broker bootstrap failed; topology will be declared on "
                "first publish: %s",
                exc,
            )
            return False
        logger.info(
            "Broker topology ready: %s -> %s (dead letters: %s -> %s)",
            self._exchange.name,
            self._queue.name,
            self._dead_letter_exchange.name,
            self._dead_letter_queue.name,
        )
        return True

    def _bootstrap_sync(self) -> None:
        with self._lock:
            try:
                self._declare_topology()
            except self._failures:
                self._drop_channel(reconnect=True)
                raise

    def _declare_topology(self) -> None:
        channel = self._ensure_channel()
        for entity in self.topology:
            try:
                entity.bind(channel).declare()
            except self._connection.channel_errors as exc:
                # An existing entity with different arguments; the
                # broker closes the channel, so open a fresh one.
                logger.warning(
                    "Declaration of %s conflicts with the existing entity: %s",
                    entity.name,
                    exc,
                )
                channel = self._reopen_channel()
        self._declared = True

    # ── Channel management ──────────────────────────────────

    def _ensure_channel(self) -> Any:
        if self._channel is None:
            self._connection.ensure_connection(
                errback=self._on_connect_error,
                max_retries=self._settings.BROKER_CONNECT_MAX_RETRIES,
            )
            self._open_channel()
        return self._channel

    def _open_channel(self) -> None:
        self._channel = self._connection.channel()
        self._producer = Producer(
            self._channel,
            exchange=self._exchange,
            auto_declare=False,
        )
        # Only AMQP channels report returns; virtual transports have no events.
        events = getattr(self._channel, "events", None)
        if events is not None:
            events["basic_return"].add(self._on_return)
        self._declared = False

    def _reopen_channel(self) -> Any:
        with contextlib.suppress(Exception):
            self._channel.close()
        self._open_channel()
        return self._channel

    def _drop_channel(self, *, reconnect: bool) -> None:
        channel = self._channel
        self._channel = None
        self._producer = None
        self._declared = False
        if channel is not None:
            with contextlib.suppress(Exception):
                channel.close()
        if reconnect:
            with contextlib.suppress(Exception):
                self._connection.collect()

    def _on_connect_error(self, exc: Exception, interval: float) -> None:
        logger.warning(
            "Broker connection failed (%s); retrying in %.1fs",
            exc,
            interval,
        )

    def _on_return(
        self,
        exception: Exception,
        exchange: str,
        routing_key: str,
        message: Any,
    ) -> None:
        logger.warning(
            "Message returned by broker: exchange=%s routing_key=%s: %s",
            exchange,
            routing_key,
            exception,
        )
        self._returned.append(routing_key)

    # ── Publishing ──────────────────────────────────────────

    def _publish_once(
        self,
        message: QueueMessage,
        retry_count: int,
        correlation_id: str,
    ) -> None:
        s = self._settings
        with self._lock:
            try:
                self._ensure_channel()
                if not self._declared:
                    self._declare_topology()
                self._returned.clear()
                self._producer.publish(
                    message.model_dump_json(),
                    exchange=self._exchange,
                    routing_key=s.ROUTING_KEY,
                    content_type=CONTENT_TYPE_JSON,
                    content_encoding="utf-8",
                    delivery_mode=_PERSISTENT,
                    mandatory=True,
                    timeout=s.PUBLISH_TIMEOUT,
                    confirm_timeout=s.PUBLISH_TIMEOUT,
                    correlation_id=correlation_id,
                    message_id=message_id_for(message),
                    headers={
                        HEADER_SOURCE: s.MESSAGE_SOURCE,
                        HEADER_TIMESTAMP: message.timestamp.isoformat(),
                        HEADER_RETRY_COUNT: retry_count,
                    },
                )
                if self._returned:
                    raise MessageReturned(
                        f"No queue bound for routing key {s.ROUTING_KEY!r}"
                    )
            except MessageReturned:
                self._declared = False
                raise
            except self._failures:
                self._drop_channel(reconnect=True)
                raise

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Publish attempt %d failed (%s: %s); retrying in %.0fs",
            retry_state.attempt_number,
            type(exc).__name__,
            exc,
            delay,
        )
        self._metrics.incr("publish_retries")

    async def _run_attempt(
        self,
        message: QueueMessage,
        retry_count: int,
        correlation_id: str,
    ) -> None:
        """Run one attempt on a worker thread and wait for its outcome.

        A thread cannot be cancelled, so an attempt that outlives
        ``PUBLISH_TIMEOUT`` is still awaited: its result decides
        whether the message went out, and no second attempt starts
        while it may still publish.
        """
        timeout = self._settings.PUBLISH_TIMEOUT
        running = asyncio.ensure_future(
            asyncio.to_thread(
                self._publish_once,
                message,
                retry_count,
                correlation_id,
            )
        )
        try:
            await asyncio.wait_for(asyncio.shield(running), timeout=timeout)
        except TimeoutError:
            self._metrics.incr("publish_timeouts")
            logger.warning(
                "Publish of item %d still running after %.1fs; "
                "waiting for the broker",
                message.id,
                timeout,
            )
            await running

    async def publish(self, message: QueueMessage) -> str:
        """Publish *message* with confirms and bounded retries.

        Args:
            message: Job message for the worker.

        Returns:
            The correlation id attached to the message.

        Raises:
            PublishFailed: When the retry budget is exhausted or the
                message cannot be published at all.  Chains the last
                underlying error.
        """
        correlation_id = correlation_id_for(message.id)
        max_attempts = self._settings.PUBLISH_MAX_ATTEMPTS
        attempts = 0
        started = time.monotonic()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=2, exp_base=2),
                retry=retry_if_exception_type(self._retryable),
                sleep=self._sleep,
                before_sleep=self._before_sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._metrics.incr("publish_attempts")
                    await self._run_attempt(message, attempts - 1, correlation_id)
        except Exception as exc:
            self._metrics.incr("publish_failures")
            logger.error(
                "Publish failed for item %d after %d attempt(s): %s",
                message.id,
                attempts,
                exc,
            )
            raise PublishFailed(
                f"Could not publish job for item {message.id} "
                f"after {attempts} attempt(s)",
                attempts=attempts,
            ) from exc

        elapsed = time.monotonic() - started
        self._metrics.observe("publish_seconds", elapsed)
        logger.info(
            "Published job: id=%d correlation_id=%s attempts=%d (%.3fs)",
            message.id,
            correlation_id,
            attempts,
            elapsed,
        )
        return correlation_id

    def publish_detached(self, message: QueueMessage) -> asyncio.Task[str]:
        """Schedule ``publish`` without waiting for it.

        The outcome is logged; the returned task can still be
        awaited by callers that change their mind.
        """
        task = asyncio.create_task(
            self.publish(message),
            name=f"publish-item-{message.id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_detached_done)
        return task

    def _on_detached_done(self, task: asyncio.Task[str]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Detached publish cancelled (%s)", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Detached publish failed (%s): %s", task.get_name(), exc)
        else:
            logger.debug("Detached publish done (%s)", task.get_name())

    # ── Health / shutdown ───────────────────────────────────

    def is_healthy(self) -> bool:
        """Connection is up and the publishing channel is open.

        Reads state only; never touches the network.
        """
        channel = self._channel
        if channel is None or not self._connection.connected:
            return False
        is_open = getattr(channel, "is_open", None)
        if is_open is not None:
            return bool(is_open)
        return not getattr(channel, "closed", False)

    async def close(self) -> None:
        """Wait for detached publishes, then release channel and connection."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._drop_channel(reconnect=False)
            with contextlib.suppress(Exception):
                self._connection.release()
        logger.info("Broker publisher closed")
