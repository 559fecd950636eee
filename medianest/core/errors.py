"""
Error taxonomy shared by the store, cache, broker and orchestrator.

Only ``PublishFailed``, ``ConflictError`` and unresolved
``StoreUnavailable`` are meant to surface to callers as failed
operations.  ``NotFoundError`` is a well-defined negative result;
``ValidationError`` is raised before any I/O happens.
"""

from __future__ import annotations


class MediaNestError(Exception):
    """Base class for every error raised by the ingestion core."""


class ValidationError(MediaNestError, ValueError):
    """Malformed input, rejected before reaching a backing service."""


class InvalidTransitionError(ValidationError):
    """A status change the item lifecycle does not permit."""

    def __init__(self, item_id: int, current: str, requested: str) -> None:
        self.item_id = item_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Item {item_id}: transition {current} -> {requested} is not allowed"
        )


class NotFoundError(MediaNestError, LookupError):
    """No item record exists for the given id."""

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class TransientInfraError(MediaNestError):
    """A backing service (store, cache, broker) is temporarily unreachable."""


class StoreUnavailable(TransientInfraError):
    """The durable store could not complete the operation."""


class ConflictError(MediaNestError):
    """Duplicate id on insert.

    Signals that the sequence counter handed out an id twice (or
    was reset), which is more severe than an ordinary write failure.
    """

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__(f"Item {item_id} already exists")


class PublishFailed(MediaNestError):
    """The job message could not be durably enqueued."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message)
