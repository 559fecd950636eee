"""
Item status lifecycle.

::

    Queued ──► Processing ──► Completed
       │            │
       └────────────┴──────► Failed

``Completed`` and ``Failed`` are terminal.  Re-applying the current
status is a no-op.  Overwriting one terminal status with the other
is accepted (last write wins, so a redelivered worker message never
fails) but classified as an anomaly for the caller to flag.
"""

from __future__ import annotations

from enum import Enum

from medianest.core.errors import InvalidTransitionError
from medianest.schemas.enums import ItemStatus

TERMINAL_STATUSES: frozenset[ItemStatus] = frozenset(
    {ItemStatus.COMPLETED, ItemStatus.FAILED}
)

_FORWARD: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.QUEUED: frozenset({ItemStatus.PROCESSING, ItemStatus.FAILED}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.COMPLETED, ItemStatus.FAILED}),
    ItemStatus.COMPLETED: frozenset(),
    ItemStatus.FAILED: frozenset(),
}


class TransitionKind(Enum):
    """How a requested status relates to the current one."""

    NOOP = "noop"
    FORWARD = "forward"
    TERMINAL_OVERWRITE = "terminal_overwrite"


def is_terminal(status: ItemStatus) -> bool:
    """Whether *status* ends the lifecycle."""
    return status in TERMINAL_STATUSES


def classify_transition(
    current: ItemStatus,
    requested: ItemStatus,
) -> TransitionKind | None:
    """Classify ``current -> requested``; ``None`` when disallowed."""
    if current == requested:
        return TransitionKind.NOOP
    if requested in _FORWARD[current]:
        return TransitionKind.FORWARD
    if is_terminal(current) and is_terminal(requested):
        return TransitionKind.TERMINAL_OVERWRITE
    return None


def check_transition(
    item_id: int,
    current: ItemStatus,
    requested: ItemStatus,
) -> TransitionKind:
    """Like ``classify_transition`` but raise on a disallowed move.

    Raises:
        InvalidTransitionError: If the lifecycle forbids the move.
    """
    kind = classify_transition(current, requested)
    if kind is None:
        raise InvalidTransitionError(item_id, current.value, requested.value)
    return kind


def allowed_sources(requested: ItemStatus) -> list[ItemStatus]:
    """Statuses from which *requested* may be written.

    Used as the compare-and-set filter of the store update, so the
    check and the write happen in one atomic operation.
    """
    return [
        status
        for status in ItemStatus
        if classify_transition(status, requested) is not None
    ]
