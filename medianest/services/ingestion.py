"""
Ingestion orchestrator.

Plain async functions that compose the sequence generator, status
store, status cache and broker publisher.  Every collaborator is a
keyword argument, so the HTTP layer wires the process-wide instances
and tests pass fakes.

Upload::

    next_id -> insert(Queued) -> publish -> id

Worker write (status or results)::

    store write -> cache invalidate -> success

Read::

    cache hit? -> else store read -> cache populate
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from medianest.core.constants import DEFAULT_TITLE, PUBLISH_FAILED_MESSAGE
from medianest.core.errors import (
    MediaNestError,
    NotFoundError,
    PublishFailed,
    ValidationError,
)
from medianest.core.lifecycle import TransitionKind, classify_transition
from medianest.core.metrics import MetricsSink, NullMetrics
from medianest.schemas.enums import ItemStatus
from medianest.schemas.items import ItemRecord, ResultEntry, StatusView
from medianest.schemas.messages import QueueMessage
from medianest.services.publisher import BrokerPublisher
from medianest.services.sequence import SequenceGenerator
from medianest.services.status_cache import StatusCache
from medianest.services.status_store import StatusStore, coerce_status

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ── Upload ──────────────────────────────────────────────────


async def issue_and_enqueue(
    title: str | None,
    description: str | None,
    locator: str,
    *,
    sequence: SequenceGenerator,
    store: StatusStore,
    publisher: BrokerPublisher,
    metrics: MetricsSink | None = None,
) -> int:
    """Register an uploaded item and hand its job to the worker.

    A blank or missing *title* becomes ``"Untitled"``.  The record
    is durable (``Queued``) before the job is published, so the
    worker can never see an id the store does not know.

    Args:
        title: Optional title.
        description: Optional description.
        locator: Opaque reference to the stored media.

    Returns:
        The new item id.

    Raises:
        ValidationError: If *locator* is blank (before any I/O).
        StoreUnavailable: If the id or the record could not be written.
        ConflictError: If the issued id already exists.
        PublishFailed: If the job could not be enqueued; the record
            is then marked ``Failed`` (best effort).
    """
    metrics = metrics or NullMetrics()
    locator = _clean(locator)
    if locator is None:
        raise ValidationError("Item locator is required")

    item_id = await sequence.next_id()
    record = await store.insert(
        ItemRecord(
            id=item_id,
            title=_clean(title) or DEFAULT_TITLE,
            description=_clean(description),
            locator=locator,
            status=ItemStatus.QUEUED,
        )
    )

    message = QueueMessage(
        id=item_id,
        locator=locator,
        timestamp=record.created_at or datetime.now(timezone.utc),
    )
    try:
        await publisher.publish(message)
    except PublishFailed:
        await _mark_unpublished(item_id, store)
        raise

    metrics.incr("items_issued")
    logger.info("Item %d queued for processing", item_id)
    return item_id


async def _mark_unpublished(item_id: int, store: StatusStore) -> None:
    try:
        await store.update_status(
            item_id,
            ItemStatus.FAILED,
            error_message=PUBLISH_FAILED_MESSAGE,
        )
    except MediaNestError as exc:
        logger.error(
            "Could not mark unpublished item %d as Failed: %s",
            item_id,
            exc,
        )
    else:
        logger.warning("Item %d marked Failed: job was never enqueued", item_id)


# ── Worker writes ───────────────────────────────────────────


async def update_status(
    item_id: int,
    status: ItemStatus | str,
    *,
    error_message: str | None = None,
    duration: int | None = None,
    store: StatusStore,
    cache: StatusCache,
    metrics: MetricsSink | None = None,
) -> ItemStatus:
    """Apply a worker status change and drop the cached snapshot.

    Overwriting one terminal status with the other is accepted but
    logged and counted as ``status_anomalies``.

    Returns:
        The previous status.

    Raises:
        ValidationError: Unknown status, bad id or duration, or a
            transition the lifecycle forbids.
        NotFoundError: If the item does not exist.
        StoreUnavailable: On store failure.
    """
    metrics = metrics or NullMetrics()
    requested = coerce_status(status)
    previous = await store.update_status(
        item_id,
        requested,
        error_message=error_message,
        duration=duration,
    )
    await cache.invalidate(item_id)

    if classify_transition(previous, requested) is TransitionKind.TERMINAL_OVERWRITE:
        logger.warning(
            "Terminal status overwritten: id=%d %s -> %s",
            item_id,
            previous,
            requested,
        )
        metrics.incr("status_anomalies")
    return previous


async def append_results(
    item_id: int,
    entries: Iterable[Any] | None,
    *,
    store: StatusStore,
    cache: StatusCache,
) -> int:
    """Merge worker results and drop the cached snapshot.

    Returns:
        Number of unique valid entries submitted (0 when none
        were valid; the call then touches nothing).
    """
    accepted = await store.append_results(item_id, entries)
    if accepted:
        await cache.invalidate(item_id)
    return accepted


# ── Reads ───────────────────────────────────────────────────


async def get_status(
    item_id: int,
    *,
    store: StatusStore,
    cache: StatusCache,
) -> StatusView:
    """Status snapshot, from the cache when possible.

    Raises:
        NotFoundError: If the item does not exist (or the store
            read missed its deadline).
        StoreUnavailable: On store failure.
    """
    entry = await cache.get(item_id)
    if entry is not None:
        return StatusView(
            id=item_id,
            status=entry.status,
            duration=entry.duration,
            cached=True,
        )

    record = await store.fetch_by_id(item_id)
    if record is None:
        raise NotFoundError(item_id)
    await cache.set(item_id, record.status, record.duration)
    return StatusView(id=item_id, status=record.status, duration=record.duration)


async def get_results(item_id: int, *, store: StatusStore) -> list[ResultEntry]:
    """Detections recorded for *item_id* (always from the store)."""
    return (await get_item(item_id, store=store)).results


async def get_item(item_id: int, *, store: StatusStore) -> ItemRecord:
    """Full item record (always from the store).

    Raises:
        NotFoundError: If the item does not exist.
    """
    record = await store.fetch_by_id(item_id)
    if record is None:
        raise NotFoundError(item_id)
    return record
