"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from bonus_engine.calculators.tier_resolver import TierConfigError, parse_tiers
from bonus_engine.calculators.types import get_trigger_label


# ============================================================================
# Bonus rule schemas
# ============================================================================


class TierSchema(BaseModel):
    """One band of a tiered rule. ``max`` of 0 means unbounded."""

    min: Decimal = Field(ge=0)
    max: Decimal = Field(default=Decimal("0"), ge=0)
    value: Decimal = Field(gt=0)


class BonusRuleCreate(BaseModel):
    """Schema for creating a bonus rule."""

    name: str
    description: str | None = None
    target_role: str
    shop_id: UUID | None = None
    trigger_type: str
    calculation_type: str
    value: Decimal
    minimum_threshold: Decimal | None = None
    maximum_cap: Decimal | None = None
    target_amount: Decimal | None = None
    tiers: list[TierSchema] | None = None
    period: str = "ONE_TIME"
    is_active: bool = True

    def to_fields(self) -> dict[str, Any]:
        fields = self.model_dump(exclude={"tiers"})
        fields["tiers"] = _dump_tiers(self.tiers)
        return fields


class BonusRuleUpdate(BaseModel):
    """Schema for a partial rule update. Only fields sent are changed."""

    name: str | None = None
    description: str | None = None
    target_role: str | None = None
    shop_id: UUID | None = None
    trigger_type: str | None = None
    calculation_type: str | None = None
    value: Decimal | None = None
    minimum_threshold: Decimal | None = None
    maximum_cap: Decimal | None = None
    target_amount: Decimal | None = None
    tiers: list[TierSchema] | None = None
    period: str | None = None
    is_active: bool | None = None

    def to_changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"tiers"})
        if "tiers" in self.model_fields_set:
            changes["tiers"] = _dump_tiers(self.tiers)
        return changes


def _dump_tiers(tiers: list[TierSchema] | None) -> list[dict[str, Any]] | None:
    if not tiers:
        return None
    return [tier.model_dump() for tier in tiers]


class BonusRuleResponse(BaseModel):
    """Schema for a bonus rule with its record statistics."""

    model_config = ConfigDict(from_attributes=True)

    bonus_rule_id: UUID
    business_id: UUID
    shop_id: UUID | None = None
    shop_name: str | None = None
    name: str
    description: str | None = None
    target_role: str
    trigger_type: str
    trigger_label: str
    calculation_type: str
    value: Decimal
    minimum_threshold: Decimal | None = None
    maximum_cap: Decimal | None = None
    target_amount: Decimal | None = None
    tiers: list[dict[str, Any]] | None = None
    period: str
    is_active: bool
    created_at: datetime
    total_bonuses_paid: int = 0
    total_bonus_amount: Decimal = Decimal("0")
    active_records: int = 0

    @classmethod
    def from_summary(cls, summary: Any) -> "BonusRuleResponse":
        rule = summary.rule
        return cls(
            bonus_rule_id=rule.bonus_rule_id,
            business_id=rule.business_id,
            shop_id=rule.shop_id,
            shop_name=summary.shop_name,
            name=rule.name,
            description=rule.description,
            target_role=rule.target_role,
            trigger_type=rule.trigger_type,
            trigger_label=get_trigger_label(rule.trigger_type),
            calculation_type=rule.calculation_type,
            value=rule.value,
            minimum_threshold=rule.minimum_threshold,
            maximum_cap=rule.maximum_cap,
            target_amount=rule.target_amount,
            tiers=_load_tiers(rule.tiers),
            period=rule.period,
            is_active=rule.is_active,
            created_at=rule.created_at,
            total_bonuses_paid=summary.total_bonuses_paid,
            total_bonus_amount=summary.total_bonus_amount,
            active_records=summary.active_records,
        )


def _load_tiers(raw: str | None) -> list[dict[str, Any]] | None:
    try:
        tiers = parse_tiers(raw)
    except TierConfigError:
        return None
    return [tier.to_dict() for tier in tiers] or None


class RuleCreatedResponse(BaseModel):
    """Schema for rule creation response."""

    id: UUID


class RuleDeletedResponse(BaseModel):
    """Schema for rule deletion response."""

    deactivated: bool


# ============================================================================
# Bonus record schemas
# ============================================================================


class BonusRecordResponse(BaseModel):
    """Schema for a bonus record."""

    model_config = ConfigDict(from_attributes=True)

    bonus_record_id: UUID
    business_id: UUID
    shop_id: UUID
    shop_name: str | None = None
    bonus_rule_id: UUID
    rule_name: str | None = None
    staff_member_id: UUID
    staff_user_id: UUID
    staff_name: str
    staff_role: str
    trigger_type: str
    trigger_label: str | None = None
    source_id: str | None = None
    source_ref: str | None = None
    base_amount: Decimal
    rate: Decimal | None = None
    amount: Decimal
    period_start: datetime
    period_end: datetime
    status: str
    approved_at: datetime | None = None
    approved_by_name: str | None = None
    paid_at: datetime | None = None
    paid_by_name: str | None = None
    payment_ref: str | None = None
    rejected_at: datetime | None = None
    notes: str | None = None
    created_at: datetime

    @classmethod
    def from_view(cls, view: Any) -> "BonusRecordResponse":
        resp = cls.model_validate(view.record)
        resp.rule_name = view.rule_name
        resp.shop_name = view.shop_name
        resp.trigger_label = get_trigger_label(view.record.trigger_type)
        return resp


class BonusRecordListResponse(BaseModel):
    """Schema for listing bonus records."""

    items: list[BonusRecordResponse]
    total: int


class RecordIdsRequest(BaseModel):
    """Schema for bulk approve requests."""

    record_ids: list[UUID]


class MarkPaidRequest(RecordIdsRequest):
    """Schema for marking records paid."""

    payment_ref: str | None = None


class RejectRequest(RecordIdsRequest):
    """Schema for rejecting records."""

    reason: str | None = None


class BulkActionResponse(BaseModel):
    """Schema for bulk status transition responses."""

    updated: int


class TargetCalculationResponse(BaseModel):
    """Schema for a target evaluation run."""

    bonuses_created: int
    already_awarded: int
    not_qualified: int
    skipped_rules: list[UUID]
    failures: list[str]


# ============================================================================
# Summary schemas
# ============================================================================


class BonusSummaryResponse(BaseModel):
    """Schema for business-wide bonus statistics."""

    model_config = ConfigDict(from_attributes=True)

    total_rules: int
    active_rules: int
    pending_bonuses: int
    pending_amount: Decimal
    approved_bonuses: int
    approved_amount: Decimal
    paid_bonuses: int
    paid_amount: Decimal
    total_bonuses_this_month: int
    total_amount_this_month: Decimal


class StaffRuleResponse(BaseModel):
    """Schema for a rule applying to a staff member."""

    model_config = ConfigDict(from_attributes=True)

    bonus_rule_id: UUID
    name: str
    trigger_type: str
    calculation_type: str
    value: Decimal
    period: str


class StaffBonusSummaryResponse(BaseModel):
    """Schema for a staff member's bonus summary."""

    has_active_bonuses: bool
    active_rules: list[StaffRuleResponse]
    records: list[BonusRecordResponse]
    total_earned: Decimal
    total_pending: Decimal
    total_approved: Decimal
    total_paid: Decimal
    this_month_earned: Decimal


class StaffBreakdownResponse(BaseModel):
    """Schema for one staff member's row in a shop summary."""

    model_config = ConfigDict(from_attributes=True)

    staff_member_id: UUID
    staff_name: str
    staff_role: str
    pending: int
    pending_amount: Decimal
    paid: int
    paid_amount: Decimal


class ShopBonusSummaryResponse(BaseModel):
    """Schema for a shop's bonus overview."""

    has_active_bonuses: bool
    active_rules: int
    pending_count: int
    pending_amount: Decimal
    approved_count: int
    approved_amount: Decimal
    paid_count: int
    paid_amount: Decimal
    this_month_amount: Decimal
    staff_bonuses: list[StaffBreakdownResponse]
    recent_records: list[BonusRecordResponse]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
