"""Item record and result models persisted in the durable store."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from medianest.schemas.enums import ItemStatus


class ResultEntry(BaseModel):
    """One detection reported by the worker.

    Two entries are the same result when both ``content`` and
    ``offset`` match.
    """

    model_config = ConfigDict(frozen=True)

    content: str = Field(
        ...,
        min_length=1,
        description="Decoded content of the detection",
    )
    offset: StrictInt = Field(
        ...,
        ge=0,
        description="Position in the media (seconds from start)",
    )

    @field_validator("content")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        """Whitespace-only content carries no information."""
        if not v.strip():
            raise ValueError("content must not be blank")
        return v

    @property
    def key(self) -> tuple[str, int]:
        """Deduplication key."""
        return (self.content, self.offset)

    def to_document(self) -> dict[str, Any]:
        """Sub-document stored in the item's ``results`` array.

        Field order is fixed so ``$addToSet`` equality holds
        between entries written at different times.
        """
        return {"content": self.content, "offset": self.offset}


class ItemRecord(BaseModel):
    """Per-item record owned by the status store.

    Most fields are optional at the model level so that records
    can be built incrementally; ``StatusStore.insert`` enforces
    the structural rules before anything is written.
    """

    id: int | None = Field(
        default=None,
        description="Sequential item identifier",
    )
    title: str | None = Field(
        default=None,
        description="Human-readable title",
    )
    description: str | None = Field(
        default=None,
        description="Free-form description",
    )
    locator: str | None = Field(
        default=None,
        description="Opaque reference to the stored media",
    )
    status: ItemStatus = Field(
        default=ItemStatus.QUEUED,
        description="Current processing status",
    )
    created_at: datetime | None = Field(
        default=None,
        description="UTC creation timestamp",
    )
    updated_at: datetime | None = Field(
        default=None,
        description="UTC timestamp of the last worker write",
    )
    duration: int = Field(
        default=0,
        ge=0,
        description="Media duration in seconds, set on completion",
    )
    error_message: str | None = Field(
        default=None,
        description="Failure reason (only when status is Failed)",
    )
    results: list[ResultEntry] = Field(
        default_factory=list,
        description="Deduplicated detections",
    )

    def to_document(self) -> dict[str, Any]:
        """Serialise to the MongoDB document shape (``_id`` = id)."""
        doc = self.model_dump(exclude={"id", "results"})
        doc["_id"] = self.id
        doc["status"] = self.status.value
        doc["results"] = [r.to_document() for r in self.results]
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ItemRecord:
        """Build a record from a raw MongoDB document."""
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["id"] = doc.get("_id")
        return cls.model_validate(data)


class StatusView(BaseModel):
    """Status snapshot served by the read path."""

    id: int
    status: ItemStatus
    duration: int = 0
    cached: bool = Field(
        default=False,
        description="Whether the snapshot came from the cache",
    )
