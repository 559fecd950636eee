"""Versioned cache-entry schema.

Entries are written and read through this model only.  Unknown
fields, a different version tag, or a wrong type make the payload
invalid, and the cache layer treats an invalid payload as a miss.
"""

from __future__ import annotations

from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from medianest.schemas.enums import ItemStatus


class CacheEntry(BaseModel):
    """Non-authoritative status snapshot stored in Redis."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    v: Literal[1] = Field(
        default=1,
        description="Schema version",
    )
    id: int = Field(..., gt=0)
    status: ItemStatus
    duration: int = Field(default=0, ge=0)
    cached_at: AwareDatetime = Field(
        ...,
        description="UTC time the snapshot was written",
    )
