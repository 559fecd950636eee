"""Tests for the item status lifecycle."""

from __future__ import annotations

import pytest

from medianest.core.errors import InvalidTransitionError, ValidationError
from medianest.core.lifecycle import (
    TransitionKind,
    allowed_sources,
    check_transition,
    classify_transition,
    is_terminal,
)
from medianest.schemas.enums import ItemStatus

Q = ItemStatus.QUEUED
P = ItemStatus.PROCESSING
C = ItemStatus.COMPLETED
F = ItemStatus.FAILED


class TestClassifyTransition:
    """Every pair of statuses."""

    @pytest.mark.parametrize(
        ("current", "requested"),
        [(Q, P), (Q, F), (P, C), (P, F)],
    )
    def test_forward_moves(self, current, requested):
        assert classify_transition(current, requested) is TransitionKind.FORWARD

    @pytest.mark.parametrize("status", list(ItemStatus))
    def test_same_status_is_noop(self, status):
        assert classify_transition(status, status) is TransitionKind.NOOP

    @pytest.mark.parametrize(("current", "requested"), [(C, F), (F, C)])
    def test_terminal_overwrite(self, current, requested):
        """Terminal to other terminal is accepted but classified."""
        assert (
            classify_transition(current, requested)
            is TransitionKind.TERMINAL_OVERWRITE
        )

    @pytest.mark.parametrize(
        ("current", "requested"),
        [(Q, C), (P, Q), (C, Q), (C, P), (F, Q), (F, P)],
    )
    def test_disallowed(self, current, requested):
        assert classify_transition(current, requested) is None


class TestCheckTransition:
    """The raising variant."""

    def test_raises_invalid_transition(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_transition(7, C, P)
        assert exc_info.value.item_id == 7
        assert exc_info.value.current == "Completed"
        assert exc_info.value.requested == "Processing"

    def test_invalid_transition_is_validation_error(self):
        """Callers catching ValidationError also catch bad transitions."""
        with pytest.raises(ValidationError):
            check_transition(1, Q, C)

    def test_returns_kind(self):
        assert check_transition(1, Q, P) is TransitionKind.FORWARD


class TestAllowedSources:
    """Compare-and-set filters used by the store."""

    def test_processing_reachable_from_queued_only(self):
        assert allowed_sources(P) == [Q, P]

    def test_completed_sources(self):
        assert set(allowed_sources(C)) == {P, C, F}

    def test_failed_sources(self):
        assert set(allowed_sources(F)) == {Q, P, C, F}

    def test_queued_only_from_itself(self):
        assert allowed_sources(Q) == [Q]


def test_terminal_statuses():
    assert is_terminal(C)
    assert is_terminal(F)
    assert not is_terminal(Q)
    assert not is_terminal(P)
