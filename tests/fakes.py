"""In-memory async stand-ins for MongoDB collections and Redis.

Only the driver surface the services use is implemented.  Each
operation yields to the event loop once before running its body
synchronously, so concurrent callers interleave between operations
but every single operation is atomic, as on the real server.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

from pymongo.errors import DuplicateKeyError
from redis.exceptions import ConnectionError as RedisConnectionError


@dataclass
class FakeUpdateResult:
    """Mirror of ``pymongo.results.UpdateResult`` counters."""

    matched_count: int
    modified_count: int


class FakeDatabase:
    """Answers ``command("ping")`` for the owning collection."""

    def __init__(self) -> None:
        self.fail_with: Exception | None = None

    async def command(self, name: str) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        return {"ok": 1.0}


class FakeCollection:
    """Async in-memory collection keyed by ``_id``.

    Set ``fail_with`` to make every call raise that exception, and
    ``find_delay`` to slow down ``find_one``.
    """

    def __init__(self) -> None:
        self.docs: dict[Any, dict[str, Any]] = {}
        self.indexes: list[tuple[list[tuple[str, int]], str | None]] = []
        self.database = FakeDatabase()
        self.fail_with: Exception | None = None
        self.find_delay: float = 0.0
        self.calls: list[str] = []

    # ── Driver surface ──────────────────────────────────────

    async def insert_one(self, document: dict[str, Any]) -> None:
        await self._enter("insert_one")
        doc_id = document["_id"]
        if doc_id in self.docs:
            raise DuplicateKeyError(
                f"E11000 duplicate key error dup key: {{ _id: {doc_id!r} }}",
                code=11000,
            )
        self.docs[doc_id] = copy.deepcopy(document)

    async def find_one(
        self,
        filter: dict[str, Any],
        projection: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        if self.find_delay:
            await asyncio.sleep(self.find_delay)
        await self._enter("find_one")
        doc = self._first(filter)
        return _project(doc, projection)

    async def find_one_and_update(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        projection: dict[str, Any] | None = None,
        upsert: bool = False,
        return_document: bool = False,
    ) -> dict[str, Any] | None:
        await self._enter("find_one_and_update")
        doc = self._first(filter)
        if doc is None:
            if not upsert:
                return None
            doc = {k: v for k, v in filter.items() if not isinstance(v, dict)}
            if doc["_id"] in self.docs:
                raise DuplicateKeyError("E11000 duplicate key error", code=11000)
            self.docs[doc["_id"]] = doc
            before = None
        else:
            before = copy.deepcopy(doc)
        _apply(doc, update)
        return _project(doc if return_document else before, projection)

    async def update_one(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
    ) -> FakeUpdateResult:
        await self._enter("update_one")
        doc = self._first(filter)
        if doc is None:
            return FakeUpdateResult(matched_count=0, modified_count=0)
        before = copy.deepcopy(doc)
        _apply(doc, update)
        return FakeUpdateResult(matched_count=1, modified_count=int(doc != before))

    async def create_index(self, keys: list[tuple[str, int]], name: str | None = None) -> str:
        await self._enter("create_index")
        self.indexes.append((keys, name))
        return name or "_".join(f"{k}_{d}" for k, d in keys)

    # ── Helpers ─────────────────────────────────────────────

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    def _first(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        for doc in self.docs.values():
            if _matches(doc, filter):
                return doc
        return None


def _matches(doc: dict[str, Any], filter: dict[str, Any]) -> bool:
    for key, cond in filter.items():
        value = doc.get(key)
        if isinstance(cond, dict) and "$in" in cond:
            if value not in cond["$in"]:
                return False
        elif value != cond:
            return False
    return True


def _apply(doc: dict[str, Any], update: dict[str, Any]) -> None:
    for field, amount in update.get("$inc", {}).items():
        doc[field] = doc.get(field, 0) + amount
    for field, value in update.get("$set", {}).items():
        doc[field] = copy.deepcopy(value)
    for field in update.get("$unset", {}):
        doc.pop(field, None)
    for field, operand in update.get("$addToSet", {}).items():
        target = doc.setdefault(field, [])
        values = operand["$each"] if isinstance(operand, dict) and "$each" in operand else [operand]
        for value in values:
            if value not in target:
                target.append(copy.deepcopy(value))


def _project(
    doc: dict[str, Any] | None,
    projection: dict[str, Any] | None,
) -> dict[str, Any] | None:
    if doc is None:
        return None
    if not projection:
        return copy.deepcopy(doc)
    keep = {k for k, v in projection.items() if v} | {"_id"}
    return {k: copy.deepcopy(v) for k, v in doc.items() if k in keep}


class FakeRedis:
    """Async dict-backed subset of ``redis.asyncio.Redis``.

    Set ``fail`` to make every call raise ``ConnectionError``.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self) -> bool:
        self._check()
        return True

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")
