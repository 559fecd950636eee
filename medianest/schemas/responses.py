"""Response models for item endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from medianest.schemas.enums import ItemStatus
from medianest.schemas.items import ResultEntry


class ItemUploadResponse(BaseModel):
    """Returned once the item is persisted and its job enqueued."""

    id: int = Field(
        ...,
        description="Sequential item identifier",
    )
    status: ItemStatus = Field(
        default=ItemStatus.QUEUED,
        description="Initial item status",
    )
    message: str = Field(
        default="Item queued for processing",
        description="Human-readable status message",
    )


class StatusUpdateResponse(BaseModel):
    """Returned after a worker status change is applied."""

    id: int
    status: ItemStatus
    previous_status: ItemStatus


class ResultsAppendResponse(BaseModel):
    """Returned after worker results are merged."""

    id: int
    accepted: int = Field(
        ...,
        description="Unique valid entries submitted",
    )


class ResultsResponse(BaseModel):
    """Detections recorded for an item."""

    id: int
    results: list[ResultEntry] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body of every error response."""

    detail: str
