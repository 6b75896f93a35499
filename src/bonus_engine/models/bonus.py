"""Bonus rule and bonus record models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bonus_engine.models.base import Base, UpdatedAtMixin

if TYPE_CHECKING:
    from bonus_engine.models.business import Shop


class BonusRule(Base, UpdatedAtMixin):
    """A configured incentive policy.

    A rule with no shop applies to every shop in the business. Rules with
    history are deactivated rather than deleted.
    """

    __tablename__ = "bonus_rule"

    bonus_rule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("business.business_id", ondelete="CASCADE"),
        nullable=False,
    )
    shop_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("shop.shop_id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_role: Mapped[str] = mapped_column(String, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String, nullable=False)
    calculation_type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    minimum_threshold: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    maximum_cap: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    target_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    tiers: Mapped[str | None] = mapped_column(Text, nullable=True)
    period: Mapped[str] = mapped_column(String, nullable=False, default="ONE_TIME")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("value > 0", name="bonus_rule_value_positive"),
        CheckConstraint(
            "target_role IN ('BUSINESS_ADMIN', 'SHOP_ADMIN', 'SALES_STAFF', "
            "'DEBT_COLLECTOR', 'ACCOUNTANT')",
            name="bonus_rule_target_role_check",
        ),
        CheckConstraint(
            "trigger_type IN ('COLLECTION', 'SALE', 'CUSTOMER_CREATED', 'FULL_PAYMENT', "
            "'ON_TIME_COLLECTION', 'RECOVERY', 'TARGET_HIT', 'SHOP_PERFORMANCE', "
            "'ZERO_DEFAULT')",
            name="bonus_rule_trigger_type_check",
        ),
        CheckConstraint(
            "calculation_type IN ('PERCENTAGE', 'FIXED_AMOUNT')",
            name="bonus_rule_calculation_type_check",
        ),
        CheckConstraint(
            "period IN ('ONE_TIME', 'DAILY', 'WEEKLY', 'MONTHLY', 'QUARTERLY', 'YEARLY')",
            name="bonus_rule_period_check",
        ),
        Index("bonus_rule_match_idx", "business_id", "trigger_type", "target_role", "is_active"),
    )

    # Relationships
    shop: Mapped[Shop | None] = relationship()
    records: Mapped[list[BonusRecord]] = relationship(back_populates="bonus_rule")


class BonusRecord(Base, UpdatedAtMixin):
    """A single awarded incentive instance.

    Created PENDING by the engine; only operator actions move it on.
    Records without a source_id come from target evaluation and are unique
    per (rule, staff member, period).
    """

    __tablename__ = "bonus_record"

    bonus_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("business.business_id", ondelete="CASCADE"),
        nullable=False,
    )
    shop_id: Mapped[UUID] = mapped_column(nullable=False)
    bonus_rule_id: Mapped[UUID] = mapped_column(
        ForeignKey("bonus_rule.bonus_rule_id"),
        nullable=False,
    )
    staff_member_id: Mapped[UUID] = mapped_column(nullable=False)
    staff_user_id: Mapped[UUID] = mapped_column(nullable=False)
    staff_name: Mapped[str] = mapped_column(String, nullable=False)
    staff_role: Mapped[str] = mapped_column(String, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String, nullable=False)
    source_id: Mapped[str | None] = mapped_column(String, nullable=True)
    source_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    base_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by_name: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_by_name: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="bonus_record_amount_nonnegative"),
        CheckConstraint("period_end >= period_start", name="bonus_record_period_check"),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'PAID', 'REJECTED', 'CANCELLED')",
            name="bonus_record_status_check",
        ),
        Index(
            "bonus_record_cap_idx",
            "bonus_rule_id",
            "staff_member_id",
            "period_start",
            "period_end",
        ),
        Index(
            "bonus_record_target_period_unique",
            "bonus_rule_id",
            "staff_member_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text("source_id IS NULL"),
            sqlite_where=text("source_id IS NULL"),
        ),
        Index("bonus_record_business_status_idx", "business_id", "status"),
    )

    # Relationships
    bonus_rule: Mapped[BonusRule] = relationship(back_populates="records")
