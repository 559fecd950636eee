"""Item status enumeration used across the application."""

from __future__ import annotations

from enum import StrEnum


class ItemStatus(StrEnum):
    """Processing status of an uploaded item.

    Values are matched exactly (case-sensitive); they are also the
    strings persisted in the store and exchanged with the worker.
    """

    QUEUED = "Queued"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
