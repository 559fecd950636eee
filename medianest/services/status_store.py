"""
Durable item records in MongoDB.

``StatusStore`` is the only writer of item documents.  It validates
input before touching the database, applies status changes as a
single compare-and-set (``find_one_and_update`` filtered on the
statuses the lifecycle allows), and merges worker results with
``$addToSet`` so deduplication against existing entries happens on
the server.

Reads are bounded by a deadline; a read that misses it is reported
as "not found" rather than as an error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import (
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
)

from medianest.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from medianest.core.lifecycle import allowed_sources
from medianest.core.metrics import MetricsSink, NullMetrics
from medianest.schemas.enums import ItemStatus
from medianest.schemas.items import ItemRecord, ResultEntry

logger = logging.getLogger(__name__)

# MongoDB error codes for "index already exists" variants.
_INDEX_EXISTS_CODES: frozenset[int] = frozenset({85, 86})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Validation helpers ──────────────────────────────────────


def coerce_status(status: ItemStatus | str) -> ItemStatus:
    """Map *status* onto the closed status enumeration.

    Raises:
        ValidationError: If *status* is not an exact match.
    """
    try:
        return ItemStatus(status)
    except ValueError as exc:
        valid = ", ".join(s.value for s in ItemStatus)
        raise ValidationError(
            f"Invalid status {status!r}; expected one of: {valid}"
        ) from exc


def _require_positive_id(item_id: int) -> None:
    if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
        raise ValidationError(f"Invalid item id: {item_id!r}")


def _coerce_record(record: ItemRecord | Mapping[str, Any]) -> ItemRecord:
    if isinstance(record, ItemRecord):
        return record
    try:
        return ItemRecord.model_validate(record)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid item record: {exc}") from exc


def validate_for_insert(record: ItemRecord) -> None:
    """Structural checks applied before an insert.

    Raises:
        ValidationError: On a missing id, title or locator, or an
            unknown status.
    """
    if record.id is None:
        raise ValidationError("Item id is required")
    _require_positive_id(record.id)
    if not record.title or not record.title.strip():
        raise ValidationError("Item title is required")
    if not record.locator or not record.locator.strip():
        raise ValidationError("Item locator is required")
    coerce_status(record.status)


def partition_entries(
    entries: Iterable[Any] | None,
) -> tuple[list[ResultEntry], int]:
    """Split raw worker entries into unique valid ones and a reject count.

    Returns:
        ``(unique_valid_entries, rejected_count)``; the first list
        keeps first-seen order.
    """
    valid: dict[tuple[str, int], ResultEntry] = {}
    rejected = 0
    for raw in entries or ():
        if isinstance(raw, ResultEntry):
            entry = raw
        else:
            try:
                entry = ResultEntry.model_validate(raw)
            except PydanticValidationError:
                rejected += 1
                continue
        valid.setdefault(entry.key, entry)
    return list(valid.values()), rejected


# ── Store ───────────────────────────────────────────────────


class StatusStore:
    """CRUD for item records.

    Usage::

        store = StatusStore(db["items"], read_timeout=5.0)
        await store.insert(ItemRecord(id=1, title="t", locator="s3://x"))
        record = await store.fetch_by_id(1)
    """

    def __init__(
        self,
        items: Any,
        *,
        read_timeout: float = 5.0,
        metrics: MetricsSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._items = items
        self._read_timeout = read_timeout
        self._metrics = metrics or NullMetrics()
        self._clock = clock

    # ── Writes ──────────────────────────────────────────────

    async def insert(self, record: ItemRecord | Mapping[str, Any]) -> ItemRecord:
        """Persist a new item record.

        ``created_at`` is stamped when the record has none.

        Returns:
            The record as stored.

        Raises:
            ValidationError: Before any I/O, if the record is malformed.
            ConflictError: If a record with the same id exists.
            StoreUnavailable: On any other database failure.
        """
        record = _coerce_record(record)
        validate_for_insert(record)
        if record.created_at is None:
            record = record.model_copy(update={"created_at": self._clock()})

        try:
            await self._items.insert_one(record.to_document())
        except DuplicateKeyError as exc:
            logger.error(
                "Duplicate item id %d on insert; the sequence counter "
                "may have been reset",
                record.id,
            )
            raise ConflictError(record.id) from exc
        except PyMongoError as exc:
            logger.error("Failed to insert item %s: %s", record.id, exc)
            raise StoreUnavailable(f"Failed to save item {record.id}") from exc

        logger.info(
            "Item saved: id=%d status=%s title=%s",
            record.id,
            record.status,
            record.title,
        )
        return record

    async def update_status(
        self,
        item_id: int,
        status: ItemStatus | str,
        error_message: str | None = None,
        duration: int | None = None,
    ) -> ItemStatus:
        """Move an item to *status*.

        The lifecycle check and the write are one atomic
        ``find_one_and_update`` whose filter only matches the
        statuses *status* may be reached from.  Re-applying the
        current status succeeds as a no-op.

        Args:
            item_id: Item identifier.
            status: Requested status (exact enumeration value).
            error_message: Kept only when *status* is ``Failed``;
                cleared for every other status.
            duration: Media duration in seconds, when known.

        Returns:
            The status the item had before this write.

        Raises:
            ValidationError: On bad input (before any I/O).
            InvalidTransitionError: If the lifecycle forbids the move.
            NotFoundError: If no record matches *item_id*.
            StoreUnavailable: On database failure.
        """
        _require_positive_id(item_id)
        requested = coerce_status(status)
        if duration is not None and duration < 0:
            raise ValidationError(f"Invalid duration: {duration}")

        fields: dict[str, Any] = {
            "status": requested.value,
            "updated_at": self._clock(),
        }
        update: dict[str, Any] = {"$set": fields}
        if requested is ItemStatus.FAILED:
            fields["error_message"] = error_message
        else:
            update["$unset"] = {"error_message": ""}
        if duration is not None:
            fields["duration"] = duration

        sources = [s.value for s in allowed_sources(requested)]
        try:
            before = await self._items.find_one_and_update(
                {"_id": item_id, "status": {"$in": sources}},
                update,
                projection={"status": True},
                return_document=ReturnDocument.BEFORE,
            )
            if before is None:
                current = await self._items.find_one(
                    {"_id": item_id},
                    projection={"status": True},
                )
        except PyMongoError as exc:
            logger.error(
                "Status update failed: id=%d status=%s: %s",
                item_id,
                requested,
                exc,
            )
            raise StoreUnavailable(
                f"Failed to update status of item {item_id}"
            ) from exc

        if before is None:
            if current is None:
                logger.warning("Item not found for status update: id=%d", item_id)
                raise NotFoundError(item_id)
            raise InvalidTransitionError(item_id, current["status"], requested.value)

        previous = ItemStatus(before["status"])
        if previous is requested:
            logger.debug("Status already current: id=%d status=%s", item_id, requested)
        else:
            logger.info(
                "Status updated: id=%d %s -> %s duration=%s",
                item_id,
                previous,
                requested,
                duration,
            )
        return previous

    async def append_results(
        self,
        item_id: int,
        entries: Iterable[Any] | None,
    ) -> int:
        """Merge worker results into the item's result set.

        Invalid entries (blank content, negative or non-integer
        offset, wrong shape) are dropped and counted.  If nothing
        valid remains the call is a no-op and performs no I/O.

        Returns:
            Number of unique valid entries submitted.

        Raises:
            ValidationError: If *item_id* is invalid.
            NotFoundError: If no record matches *item_id*.
            StoreUnavailable: On database failure.
        """
        _require_positive_id(item_id)
        unique, rejected = partition_entries(entries)
        if rejected:
            logger.warning(
                "Dropped %d invalid result entries: id=%d",
                rejected,
                item_id,
            )
            self._metrics.incr("results_rejected", rejected)
        if not unique:
            logger.debug("No valid results to add: id=%d", item_id)
            return 0

        try:
            result = await self._items.update_one(
                {"_id": item_id},
                {
                    "$addToSet": {
                        "results": {"$each": [e.to_document() for e in unique]},
                    },
                },
            )
        except PyMongoError as exc:
            logger.error(
                "Failed to add results: id=%d count=%d: %s",
                item_id,
                len(unique),
                exc,
            )
            raise StoreUnavailable(f"Failed to add results to item {item_id}") from exc

        if result.matched_count == 0:
            logger.warning("Item not found for results: id=%d", item_id)
            raise NotFoundError(item_id)
        if result.modified_count == 0:
            logger.debug("Results already present: id=%d count=%d", item_id, len(unique))
        else:
            logger.info("Results added: id=%d count=%d", item_id, len(unique))
        return len(unique)

    # ── Reads ───────────────────────────────────────────────

    async def fetch_by_id(
        self,
        item_id: int,
        *,
        timeout: float | None = None,
    ) -> ItemRecord | None:
        """Load an item record.

        Args:
            item_id: Item identifier.
            timeout: Deadline in seconds; defaults to the store's
                read timeout.

        Returns:
            The record, or ``None`` when it does not exist, the id
            is not positive, or the deadline passed.  Callers that
            need certainty after a ``None`` must retry.

        Raises:
            StoreUnavailable: If the database is unreachable.
        """
        if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
            logger.warning("Invalid id for lookup: %r", item_id)
            return None

        deadline = self._read_timeout if timeout is None else timeout
        try:
            doc = await asyncio.wait_for(
                self._items.find_one({"_id": item_id}),
                timeout=deadline,
            )
        except (TimeoutError, ExecutionTimeout, NetworkTimeout):
            logger.warning("Store read timed out: id=%d (deadline %.1fs)", item_id, deadline)
            return None
        except PyMongoError as exc:
            logger.error("Store read failed: id=%d: %s", item_id, exc)
            raise StoreUnavailable(f"Failed to load item {item_id}") from exc

        if doc is None:
            logger.debug("Item not found: id=%d", item_id)
            return None
        return ItemRecord.from_document(doc)

    # ── Maintenance ─────────────────────────────────────────

    async def ensure_indexes(self) -> None:
        """Create the status and status/created_at indexes.

        Failures are logged; the store works without them.
        """
        try:
            await self._items.create_index(
                [("status", ASCENDING)],
                name="status_idx",
            )
            await self._items.create_index(
                [("status", ASCENDING), ("created_at", DESCENDING)],
                name="status_created_at_idx",
            )
        except OperationFailure as exc:
            if exc.code in _INDEX_EXISTS_CODES:
                logger.debug("Indexes already exist")
                return
            logger.warning("Failed to create indexes: %s", exc)
        except PyMongoError as exc:
            logger.warning("Failed to create indexes: %s", exc)
        else:
            logger.info("Indexes ensured: status_idx, status_created_at_idx")

    async def ping(self) -> bool:
        """Whether the database answers a ``ping`` command."""
        try:
            await self._items.database.command("ping")
        except PyMongoError:
            logger.debug("Store ping failed", exc_info=True)
            return False
        return True
