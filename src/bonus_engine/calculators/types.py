"""Type definitions for the bonus calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class StaffRole(str, Enum):
    """Staff roles a bonus rule can target."""

    BUSINESS_ADMIN = "BUSINESS_ADMIN"
    SHOP_ADMIN = "SHOP_ADMIN"
    SALES_STAFF = "SALES_STAFF"
    DEBT_COLLECTOR = "DEBT_COLLECTOR"
    ACCOUNTANT = "ACCOUNTANT"


class TriggerType(str, Enum):
    """Business events that can cause a bonus rule to fire."""

    COLLECTION = "COLLECTION"
    SALE = "SALE"
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    FULL_PAYMENT = "FULL_PAYMENT"
    ON_TIME_COLLECTION = "ON_TIME_COLLECTION"
    RECOVERY = "RECOVERY"
    TARGET_HIT = "TARGET_HIT"
    SHOP_PERFORMANCE = "SHOP_PERFORMANCE"
    ZERO_DEFAULT = "ZERO_DEFAULT"

    @property
    def is_target_based(self) -> bool:
        """Whether the trigger is evaluated in aggregate over a period."""
        return self in TARGET_TRIGGERS

    @property
    def label(self) -> str:
        """Human-readable label for display."""
        return TRIGGER_LABELS[self]


TARGET_TRIGGERS = frozenset(
    {TriggerType.TARGET_HIT, TriggerType.ZERO_DEFAULT, TriggerType.SHOP_PERFORMANCE}
)

TRIGGER_LABELS: dict[TriggerType, str] = {
    TriggerType.COLLECTION: "Payment Collection",
    TriggerType.SALE: "Sale Made",
    TriggerType.CUSTOMER_CREATED: "Customer Created",
    TriggerType.FULL_PAYMENT: "Full Payment",
    TriggerType.ON_TIME_COLLECTION: "On-time Collection",
    TriggerType.RECOVERY: "Debt Recovery",
    TriggerType.TARGET_HIT: "Target Achieved",
    TriggerType.SHOP_PERFORMANCE: "Shop Performance",
    TriggerType.ZERO_DEFAULT: "Zero Default",
}


def get_trigger_label(value: str) -> str:
    """Label for a trigger type value, tolerating unknown strings."""
    try:
        return TriggerType(value).label
    except ValueError:
        return value.replace("_", " ")


class CalculationType(str, Enum):
    """How a rule's value is applied to the base amount."""

    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class BonusPeriod(str, Enum):
    """Period granularity for bucketing and capping awards."""

    ONE_TIME = "ONE_TIME"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


@dataclass(frozen=True)
class Tier:
    """A base-amount range mapped to a rate or fixed value.

    ``max_amount`` of None means the tier has no upper bound (stored as 0).
    """

    min_amount: Decimal
    max_amount: Decimal | None
    value: Decimal

    def matches(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "min": float(self.min_amount),
            "max": float(self.max_amount) if self.max_amount is not None else 0,
            "value": float(self.value),
        }


@dataclass(frozen=True)
class PeriodWindow:
    """Closed period window; both ends are calendar-local."""

    start: datetime
    end: datetime

    @property
    def exclusive_end(self) -> datetime:
        """First instant after the window (ends are stored to the second)."""
        return self.end + timedelta(seconds=1)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.exclusive_end


@dataclass(frozen=True)
class BonusEvent:
    """A qualifying business event handed to the award calculator."""

    business_id: UUID
    shop_id: UUID
    trigger_type: TriggerType
    staff_member_id: UUID
    staff_user_id: UUID
    staff_name: str
    staff_role: StaffRole
    source_id: str
    base_amount: Decimal
    source_ref: str | None = None


@dataclass
class AwardDraft:
    """A bonus record candidate before persistence."""

    business_id: UUID
    shop_id: UUID
    bonus_rule_id: UUID
    staff_member_id: UUID
    staff_user_id: UUID
    staff_name: str
    staff_role: str
    trigger_type: str
    base_amount: Decimal
    amount: Decimal
    period: PeriodWindow
    rate: Decimal | None = None
    source_id: str | None = None
    source_ref: str | None = None
