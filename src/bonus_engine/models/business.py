"""Business, shop, staff, and transaction models read by the bonus engine.

These tables belong to the wider BNPL platform; only the columns the bonus
engine reads are mapped here.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bonus_engine.models.base import Base, TimestampMixin, UpdatedAtMixin

STAFF_ROLE_CHECK = (
    "role IN ('BUSINESS_ADMIN', 'SHOP_ADMIN', 'SALES_STAFF', 'DEBT_COLLECTOR', 'ACCOUNTANT')"
)


class Business(Base, TimestampMixin):
    """A tenant business."""

    __tablename__ = "business"

    business_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    shops: Mapped[list[Shop]] = relationship(back_populates="business")


class Shop(Base, TimestampMixin):
    """A shop within a business."""

    __tablename__ = "shop"

    shop_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("business.business_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    business: Mapped[Business] = relationship(back_populates="shops")
    members: Mapped[list[ShopMember]] = relationship(back_populates="shop")


class ShopMember(Base, TimestampMixin):
    """A staff member's role assignment in a shop."""

    __tablename__ = "shop_member"

    shop_member_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    shop_id: Mapped[UUID] = mapped_column(
        ForeignKey("shop.shop_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    user_name: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("shop_id", "user_id", "role", name="shop_member_shop_user_role_unique"),
        CheckConstraint(STAFF_ROLE_CHECK, name="shop_member_role_check"),
    )

    shop: Mapped[Shop] = relationship(back_populates="members")


class Customer(Base, TimestampMixin):
    """A BNPL customer, optionally assigned to a debt collector."""

    __tablename__ = "customer"

    customer_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    shop_id: Mapped[UUID] = mapped_column(
        ForeignKey("shop.shop_id", ondelete="CASCADE"),
        nullable=False,
    )
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    assigned_collector_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("shop_member.shop_member_id", ondelete="SET NULL"),
        nullable=True,
    )


class Purchase(Base, UpdatedAtMixin):
    """A purchase paid off in installments."""

    __tablename__ = "purchase"

    purchase_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customer.customer_id", ondelete="CASCADE"),
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'COMPLETED', 'OVERDUE', 'DEFAULTED')",
            name="purchase_status_check",
        ),
        Index("purchase_customer_idx", "customer_id"),
    )


class Payment(Base, TimestampMixin):
    """An installment payment, confirmed once the money is verified."""

    __tablename__ = "payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    purchase_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase.purchase_id", ondelete="CASCADE"),
        nullable=False,
    )
    collector_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("shop_member.shop_member_id", ondelete="SET NULL"),
        nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("payment_collector_confirmed_idx", "collector_id", "confirmed_at"),
    )


class AuditLog(Base, TimestampMixin):
    """Audit trail entry."""

    __tablename__ = "audit_log"

    audit_log_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    business_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
