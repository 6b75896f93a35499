"""Bonus record state machine with transition validation."""

from __future__ import annotations

from enum import Enum


class BonusRecordStatus(str, Enum):
    """Bonus record status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    # Reserved for manual data correction; no transition reaches it
    CANCELLED = "CANCELLED"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BonusRecordStateMachine:
    """State machine for bonus record status transitions.

    Allowed transitions:
    - PENDING → APPROVED
    - PENDING → PAID
    - APPROVED → PAID
    - PENDING → REJECTED
    - APPROVED → REJECTED
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        BonusRecordStatus.PENDING: [
            BonusRecordStatus.APPROVED,
            BonusRecordStatus.PAID,
            BonusRecordStatus.REJECTED,
        ],
        BonusRecordStatus.APPROVED: [BonusRecordStatus.PAID, BonusRecordStatus.REJECTED],
        BonusRecordStatus.PAID: [],  # Terminal state
        BonusRecordStatus.REJECTED: [],  # Terminal state
        BonusRecordStatus.CANCELLED: [],  # Terminal state
    }

    # Statuses that count towards a rule's per-period cap
    CAP_COUNTED = frozenset(
        {BonusRecordStatus.PENDING, BonusRecordStatus.APPROVED, BonusRecordStatus.PAID}
    )

    # Statuses still awaiting payout
    OUTSTANDING = frozenset({BonusRecordStatus.PENDING, BonusRecordStatus.APPROVED})

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def eligible_sources(cls, to_status: str) -> list[str]:
        """Statuses from which ``to_status`` can be reached."""
        return [
            BonusRecordStatus(from_status).value
            for from_status, targets in cls.VALID_TRANSITIONS.items()
            if to_status in targets
        ]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no further transitions are possible."""
        return not cls.VALID_TRANSITIONS.get(status, [])

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
