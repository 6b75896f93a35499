"""Tests for bonus record state machine."""

import pytest

from bonus_engine.services.state_machine import (
    BonusRecordStateMachine,
    BonusRecordStatus,
    InvalidTransitionError,
)


class TestBonusRecordStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        assert BonusRecordStateMachine.can_transition("PENDING", "APPROVED") is True
        assert BonusRecordStateMachine.can_transition("PENDING", "PAID") is True
        assert BonusRecordStateMachine.can_transition("PENDING", "REJECTED") is True
        assert BonusRecordStateMachine.can_transition("APPROVED", "PAID") is True
        assert BonusRecordStateMachine.can_transition("APPROVED", "REJECTED") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # No going back
        assert BonusRecordStateMachine.can_transition("APPROVED", "PENDING") is False
        assert BonusRecordStateMachine.can_transition("PAID", "APPROVED") is False

        # Terminal states
        assert BonusRecordStateMachine.can_transition("PAID", "REJECTED") is False
        assert BonusRecordStateMachine.can_transition("REJECTED", "APPROVED") is False
        assert BonusRecordStateMachine.can_transition("REJECTED", "PAID") is False
        assert BonusRecordStateMachine.can_transition("CANCELLED", "PENDING") is False

        # Nothing reaches CANCELLED
        assert BonusRecordStateMachine.can_transition("PENDING", "CANCELLED") is False

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            BonusRecordStateMachine.validate_transition("PAID", "REJECTED")

        assert exc_info.value.from_status == "PAID"
        assert exc_info.value.to_status == "REJECTED"

    def test_eligible_sources(self):
        assert BonusRecordStateMachine.eligible_sources(BonusRecordStatus.APPROVED) == ["PENDING"]
        assert sorted(BonusRecordStateMachine.eligible_sources("PAID")) == ["APPROVED", "PENDING"]
        assert sorted(BonusRecordStateMachine.eligible_sources("REJECTED")) == [
            "APPROVED",
            "PENDING",
        ]
        assert BonusRecordStateMachine.eligible_sources("CANCELLED") == []

    def test_terminal_states(self):
        assert BonusRecordStateMachine.is_terminal("PAID") is True
        assert BonusRecordStateMachine.is_terminal("REJECTED") is True
        assert BonusRecordStateMachine.is_terminal("CANCELLED") is True
        assert BonusRecordStateMachine.is_terminal("PENDING") is False

    def test_cap_counted_statuses(self):
        counted = BonusRecordStateMachine.CAP_COUNTED
        assert BonusRecordStatus.PENDING in counted
        assert BonusRecordStatus.PAID in counted
        assert BonusRecordStatus.REJECTED not in counted
        assert BonusRecordStatus.CANCELLED not in counted
