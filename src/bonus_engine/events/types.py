"""Business events published by the platform's action layer.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata

The bonus engine subscribes to these rather than being called directly
from payment, sale, and customer handlers.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from bonus_engine.calculators.types import StaffRole, TriggerType


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYMENT = "payment"
    SALE = "sale"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every business event."""

    event_id: UUID
    timestamp: datetime
    business_id: UUID
    correlation_id: UUID  # Links related events
    actor_id: UUID | None  # User or system that triggered
    actor_type: str  # 'user', 'system', 'scheduler', 'import'
    version: int = 1

    @classmethod
    def create(
        cls,
        business_id: UUID,
        correlation_id: UUID | None = None,
        actor_id: UUID | None = None,
        actor_type: str = "user",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(),
            business_id=business_id,
            correlation_id=correlation_id or uuid4(),
            actor_id=actor_id,
            actor_type=actor_type,
        )


@dataclass(frozen=True)
class StaffRef:
    """The staff member credited with a business event."""

    staff_member_id: UUID
    user_id: UUID
    name: str
    role: StaffRole


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all business events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return _serialize_dict(data)

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Enum):
        return obj.value
    return obj


@dataclass(frozen=True)
class BonusTriggeringEvent(DomainEvent):
    """A business event that can earn a staff member a bonus."""

    shop_id: UUID
    staff: StaffRef
    source_id: str
    amount: Decimal
    source_ref: str | None

    def bonus_triggers(self) -> list[TriggerType]:
        """Trigger types this event fires, in evaluation order."""
        raise NotImplementedError("Subclasses must define bonus_triggers")


# =============================================================================
# Payment events
# =============================================================================


@dataclass(frozen=True)
class PaymentConfirmed(BonusTriggeringEvent):
    """An installment payment collected by a staff member was confirmed."""

    on_time: bool = False
    recovered: bool = False

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT

    def bonus_triggers(self) -> list[TriggerType]:
        triggers = [TriggerType.COLLECTION]
        if self.on_time:
            triggers.append(TriggerType.ON_TIME_COLLECTION)
        if self.recovered:
            triggers.append(TriggerType.RECOVERY)
        return triggers


@dataclass(frozen=True)
class PurchaseFullyPaid(BonusTriggeringEvent):
    """The final installment of a purchase was received."""

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT

    def bonus_triggers(self) -> list[TriggerType]:
        return [TriggerType.FULL_PAYMENT]


# =============================================================================
# Sale and customer events
# =============================================================================


@dataclass(frozen=True)
class SaleCreated(BonusTriggeringEvent):
    """A staff member recorded a new BNPL sale."""

    @property
    def category(self) -> EventCategory:
        return EventCategory.SALE

    def bonus_triggers(self) -> list[TriggerType]:
        return [TriggerType.SALE]


@dataclass(frozen=True)
class CustomerCreated(BonusTriggeringEvent):
    """A staff member onboarded a new customer."""

    @property
    def category(self) -> EventCategory:
        return EventCategory.CUSTOMER

    def bonus_triggers(self) -> list[TriggerType]:
        return [TriggerType.CUSTOMER_CREATED]
