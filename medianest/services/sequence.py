"""
Sequential item identifiers (counter pattern).

Every id comes from a single ``find_one_and_update`` that increments
the counter document and returns the new value, creating the
document on first use.  MongoDB serialises the increment, so
concurrent callers always receive distinct, contiguous values and
the application never holds a lock.
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from medianest.core.constants import COUNTER_FIELD, COUNTER_KEY
from medianest.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class SequenceGenerator:
    """Issue strictly increasing ids starting at 1.

    Usage::

        sequence = SequenceGenerator(db["counters"])
        item_id = await sequence.next_id()
    """

    def __init__(self, counters: Any, *, key: str = COUNTER_KEY) -> None:
        self._counters = counters
        self._key = key

    async def next_id(self) -> int:
        """Atomically increment the counter and return the new value.

        The first call on an absent counter creates it and
        returns 1.

        Returns:
            The freshly issued id.

        Raises:
            StoreUnavailable: If the increment could not complete.
        """
        try:
            doc = await self._increment()
        except DuplicateKeyError:
            # Two upserts raced on the absent counter and one lost
            # the insert; the document exists now, so a retry is a
            # plain increment.
            logger.debug("Counter upsert race on %s, retrying once", self._key)
            try:
                doc = await self._increment()
            except PyMongoError as exc:
                logger.error("Counter increment failed after upsert race: %s", exc)
                raise StoreUnavailable("Failed to generate next id") from exc
        except PyMongoError as exc:
            logger.error("Counter increment failed: %s", exc)
            raise StoreUnavailable("Failed to generate next id") from exc

        if doc is None:
            raise StoreUnavailable("Counter increment returned no document")

        value = int(doc[COUNTER_FIELD])
        logger.debug("Issued id %d", value)
        return value

    async def current(self) -> int:
        """Return the last issued id (0 before the first issue).

        Diagnostic read only; never use it to derive a new id.

        Raises:
            StoreUnavailable: If the counter could not be read.
        """
        try:
            doc = await self._counters.find_one({"_id": self._key})
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to read counter") from exc
        return int(doc[COUNTER_FIELD]) if doc else 0

    async def _increment(self) -> dict[str, Any] | None:
        return await self._counters.find_one_and_update(
            {"_id": self._key},
            {"$inc": {COUNTER_FIELD: 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
