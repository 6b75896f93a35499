"""Bonus engine services."""

from bonus_engine.services.results import ActionResult, Actor
from bonus_engine.services.state_machine import (
    BonusRecordStateMachine,
    BonusRecordStatus,
    InvalidTransitionError,
)

__all__ = [
    "ActionResult",
    "Actor",
    "BonusRecordStateMachine",
    "BonusRecordStatus",
    "InvalidTransitionError",
]
