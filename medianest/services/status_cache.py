"""
Cache-aside status snapshots in Redis.

``StatusCache`` sits in front of the status store on the read path.
Entries are small versioned JSON documents (``CacheEntry``) under
``item_status:<id>`` with a TTL.  The cache is never authoritative:

- every write path invalidates the entry for the item it touched;
- an entry older than ``stale_after`` is evicted on read and
  reported as a miss, so a reader never trusts a snapshot that is
  about to expire anyway;
- a payload that fails schema validation (unknown version, extra
  fields, wrong types) is deleted and reported as a miss;
- any Redis error is logged, counted and degrades to a miss or a
  no-op.  Reads and writes of the service never fail because of
  the cache.

Setting ``enabled=False`` (``CACHE_ENABLED=false``) turns every call
into a miss or a no-op without touching Redis.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from medianest.core.constants import REDIS_PREFIX_ITEM_STATUS
from medianest.core.metrics import MetricsSink, NullMetrics
from medianest.schemas.cache import CacheEntry
from medianest.schemas.enums import ItemStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(item_id: int) -> str:
    """Redis key for the status snapshot of *item_id*."""
    return f"{REDIS_PREFIX_ITEM_STATUS}{item_id}"


class StatusCache:
    """Status snapshots with TTL and near-expiry eviction.

    Usage::

        cache = StatusCache(redis_client, ttl=900, stale_after=840)
        entry = await cache.get(item_id)
        if entry is None:
            record = await store.fetch_by_id(item_id)
            await cache.set(item_id, record.status, record.duration)
    """

    def __init__(
        self,
        client: Any,
        *,
        ttl: int = 900,
        stale_after: int = 840,
        enabled: bool = True,
        metrics: MetricsSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if stale_after >= ttl:
            raise ValueError(
                f"stale_after ({stale_after}) must be smaller than ttl ({ttl})"
            )
        self._client = client
        self._ttl = ttl
        self._stale_after = stale_after
        self._enabled = enabled and client is not None
        self._metrics = metrics or NullMetrics()
        self._clock = clock
        logger.info(
            "StatusCache initialised (enabled=%s, ttl=%ds, stale_after=%ds)",
            self._enabled,
            self._ttl,
            self._stale_after,
        )

    @property
    def enabled(self) -> bool:
        """Whether the cache is active."""
        return self._enabled

    # ── Public API ──────────────────────────────────────────

    async def get(self, item_id: int) -> CacheEntry | None:
        """Look up the snapshot for *item_id*.

        Returns:
            The entry, or ``None`` on a miss, a near-expiry
            eviction, an invalid payload, or a Redis error.
        """
        if not self._enabled:
            return None

        key = cache_key(item_id)
        try:
            raw = await self._client.get(key)
        except Exception:
            logger.warning("Status cache GET failed for %s", key, exc_info=True)
            self._metrics.incr("cache_errors")
            self._metrics.incr("cache_misses")
            return None

        if raw is None:
            logger.debug("Status cache MISS (%s)", key)
            self._metrics.incr("cache_misses")
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Discarding invalid status cache entry %s", key)
            self._metrics.incr("cache_errors")
            self._metrics.incr("cache_misses")
            await self._delete(key)
            return None

        if entry.id != item_id:
            logger.warning(
                "Discarding status cache entry %s holding id %d",
                key,
                entry.id,
            )
            self._metrics.incr("cache_errors")
            self._metrics.incr("cache_misses")
            await self._delete(key)
            return None

        age = (self._clock() - entry.cached_at).total_seconds()
        if age >= self._stale_after:
            logger.debug("Evicting near-expiry entry %s (age %.0fs)", key, age)
            self._metrics.incr("cache_evictions")
            self._metrics.incr("cache_misses")
            await self._delete(key)
            return None

        logger.debug("Status cache HIT (%s, age %.0fs)", key, age)
        self._metrics.incr("cache_hits")
        return entry

    async def set(
        self,
        item_id: int,
        status: ItemStatus,
        duration: int = 0,
        ttl: int | None = None,
    ) -> None:
        """Write a snapshot with an expiry.

        Args:
            item_id: Item identifier.
            status: Current status from the store.
            duration: Current duration from the store.
            ttl: Override of the default TTL in seconds.

        Raises:
            ValueError: If *ttl* is not positive.
        """
        ttl = self._ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if not self._enabled:
            return

        key = cache_key(item_id)
        try:
            entry = CacheEntry(
                id=item_id,
                status=status,
                duration=duration,
                cached_at=self._clock(),
            )
            await self._client.setex(key, ttl, entry.model_dump_json())
        except Exception:
            logger.warning("Status cache SET failed for %s", key, exc_info=True)
            self._metrics.incr("cache_errors")

    async def invalidate(self, item_id: int) -> None:
        """Remove the snapshot for *item_id* (no-op when absent)."""
        if not self._enabled:
            return
        await self._delete(cache_key(item_id))

    async def ping(self) -> bool:
        """Whether Redis answers; ``False`` when disabled."""
        if not self._enabled:
            return False
        try:
            return bool(await self._client.ping())
        except Exception:
            logger.debug("Status cache ping failed", exc_info=True)
            return False

    # ── Internals ───────────────────────────────────────────

    async def _delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except Exception:
            logger.warning("Status cache DELETE failed for %s", key, exc_info=True)
            self._metrics.incr("cache_errors")
