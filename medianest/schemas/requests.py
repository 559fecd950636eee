"""Request models for item endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from medianest.schemas.enums import ItemStatus

# Limits carried over from the upload form.
_MAX_TITLE_CHARS: int = 100
_MAX_DESCRIPTION_CHARS: int = 500


class ItemUploadRequest(BaseModel):
    """Request body for registering an uploaded item.

    The media itself is stored by the upload layer; this
    request only carries its ``locator``.
    """

    title: str | None = Field(
        default=None,
        max_length=_MAX_TITLE_CHARS,
        description="Optional title (defaults to 'Untitled')",
    )
    description: str | None = Field(
        default=None,
        max_length=_MAX_DESCRIPTION_CHARS,
        description="Optional description",
    )
    locator: str = Field(
        ...,
        min_length=1,
        description="Opaque reference to the stored media",
    )


class StatusUpdateRequest(BaseModel):
    """Status change reported by the worker."""

    status: ItemStatus = Field(
        ...,
        description="New status",
    )
    error_message: str | None = Field(
        default=None,
        description="Failure reason (only kept for Failed)",
    )
    duration: int | None = Field(
        default=None,
        ge=0,
        description="Media duration in seconds",
    )


class ResultsAppendRequest(BaseModel):
    """Detections reported by the worker.

    Entries are accepted loosely here; per-entry validation
    happens in the status store, which drops invalid entries
    instead of rejecting the whole request.
    """

    results: list[Any] = Field(
        default_factory=list,
        description="List of ``{content, offset}`` objects",
    )
