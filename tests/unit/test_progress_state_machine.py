"""Unit tests for the achievement progress state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from wastewise.achievements.reconciler import (
    VALID_TRANSITIONS,
    ProgressState,
    in_validity_window,
    state_of,
    validate_transition,
)
from wastewise.errors import StateConflictError


class TestProgressStateMachine:
    def test_valid_transitions_structure(self):
        assert set(VALID_TRANSITIONS.keys()) == set(ProgressState)

    def test_forward_path(self):
        validate_transition(ProgressState.NEW, ProgressState.IN_PROGRESS)
        validate_transition(ProgressState.IN_PROGRESS, ProgressState.COMPLETED)
        validate_transition(ProgressState.COMPLETED, ProgressState.CLAIMED)

    def test_new_can_complete_directly(self):
        validate_transition(ProgressState.NEW, ProgressState.COMPLETED)

    def test_claimed_is_terminal(self):
        assert VALID_TRANSITIONS[ProgressState.CLAIMED] == []
        for target in ProgressState:
            with pytest.raises(StateConflictError, match="Invalid transition"):
                validate_transition(ProgressState.CLAIMED, target)

    def test_cannot_claim_before_completion(self):
        with pytest.raises(StateConflictError):
            validate_transition(ProgressState.IN_PROGRESS, ProgressState.CLAIMED)
        with pytest.raises(StateConflictError):
            validate_transition(ProgressState.NEW, ProgressState.CLAIMED)

    def test_cannot_go_backwards(self):
        with pytest.raises(StateConflictError):
            validate_transition(ProgressState.COMPLETED, ProgressState.IN_PROGRESS)


class TestStateOf:
    def test_missing_row_is_new(self):
        assert state_of(None) == ProgressState.NEW

    def test_row_flags(self):
        assert state_of(SimpleNamespace(is_claimed=False, is_completed=False)) == ProgressState.IN_PROGRESS
        assert state_of(SimpleNamespace(is_claimed=False, is_completed=True)) == ProgressState.COMPLETED
        assert state_of(SimpleNamespace(is_claimed=True, is_completed=True)) == ProgressState.CLAIMED


class TestValidityWindow:
    def test_open_window(self):
        now = datetime.now(timezone.utc)
        assert in_validity_window(SimpleNamespace(valid_from=None, valid_until=None), now)

    def test_bounds(self):
        now = datetime.now(timezone.utc)
        window = SimpleNamespace(valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1))
        assert in_validity_window(window, now)
        assert not in_validity_window(window, now + timedelta(days=2))
        assert not in_validity_window(window, now - timedelta(days=2))
