"""ORM models."""

from bonus_engine.models.base import Base, TimestampMixin, UpdatedAtMixin
from bonus_engine.models.bonus import BonusRecord, BonusRule
from bonus_engine.models.business import (
    AuditLog,
    Business,
    Customer,
    Payment,
    Purchase,
    Shop,
    ShopMember,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    "AuditLog",
    "BonusRecord",
    "BonusRule",
    "Business",
    "Customer",
    "Payment",
    "Purchase",
    "Shop",
    "ShopMember",
]
