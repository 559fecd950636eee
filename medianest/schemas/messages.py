"""Job message handed to the processing worker."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class QueueMessage(BaseModel):
    """Body of the job message.

    Serialised as UTF-8 JSON:
    ``{"id": 1, "locator": "...", "timestamp": "<ISO-8601>"}``.
    """

    id: int = Field(..., gt=0, description="Item identifier")
    locator: str = Field(
        ...,
        min_length=1,
        description="Where the worker fetches the media from",
    )
    timestamp: datetime = Field(
        ...,
        description="UTC time the job was issued",
    )
