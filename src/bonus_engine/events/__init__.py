"""Business events and the bonus subscriber."""

from bonus_engine.events.emitter import AsyncEventBatch, AsyncEventEmitter
from bonus_engine.events.subscriber import (
    BonusEventSubscriber,
    to_bonus_events,
    trigger_bonus_calculation,
)
from bonus_engine.events.types import (
    CustomerCreated,
    DomainEvent,
    EventCategory,
    EventMetadata,
    PaymentConfirmed,
    PurchaseFullyPaid,
    SaleCreated,
    StaffRef,
)

__all__ = [
    "AsyncEventBatch",
    "AsyncEventEmitter",
    "BonusEventSubscriber",
    "CustomerCreated",
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    "PaymentConfirmed",
    "PurchaseFullyPaid",
    "SaleCreated",
    "StaffRef",
    "to_bonus_events",
    "trigger_bonus_calculation",
]
