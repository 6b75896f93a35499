"""Bonus record lifecycle, listing, and summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.calculators.award_calculator import to_decimal
from bonus_engine.calculators.period_resolver import local_now, resolve_period
from bonus_engine.calculators.rule_matcher import RuleMatcher
from bonus_engine.calculators.target_evaluator import TargetEvaluator
from bonus_engine.calculators.types import BonusPeriod, PeriodWindow
from bonus_engine.models import BonusRecord, BonusRule, Shop, ShopMember
from bonus_engine.services.audit import record_audit
from bonus_engine.services.results import ActionResult, Actor
from bonus_engine.services.state_machine import BonusRecordStateMachine, BonusRecordStatus

logger = logging.getLogger(__name__)

MAX_LISTED_RECORDS = 500
STAFF_RECENT_RECORDS = 50
SHOP_RECENT_RECORDS = 10


@dataclass
class RecordFilters:
    """Filters for listing bonus records. "all" is the same as unset."""

    status: str | None = None
    staff_member_id: UUID | None = None
    shop_id: UUID | None = None
    trigger_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None


@dataclass
class BonusRecordView:
    """A record with the display names joined in."""

    record: BonusRecord
    rule_name: str
    shop_name: str


@dataclass
class StatusTotals:
    """Count and amount of records per status."""

    counts: dict[str, int] = field(default_factory=dict)
    amounts: dict[str, Decimal] = field(default_factory=dict)

    def count(self, status: BonusRecordStatus) -> int:
        return self.counts.get(status.value, 0)

    def amount(self, status: BonusRecordStatus) -> Decimal:
        return self.amounts.get(status.value, Decimal("0"))


@dataclass
class BonusSummaryStats:
    """Business-wide bonus statistics."""

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


@dataclass
class StaffBonusSummary:
    """A staff member's applicable rules and earnings."""

    active_rules: list[BonusRule]
    records: list[BonusRecordView]
    total_earned: Decimal
    total_pending: Decimal
    total_approved: Decimal
    total_paid: Decimal
    this_month_earned: Decimal

    @property
    def has_active_bonuses(self) -> bool:
        return bool(self.active_rules)


@dataclass
class StaffBonusBreakdown:
    """Per-staff outstanding vs. paid totals within a shop."""

    staff_member_id: UUID
    staff_name: str
    staff_role: str
    pending: int = 0
    pending_amount: Decimal = Decimal("0")
    paid: int = 0
    paid_amount: Decimal = Decimal("0")


@dataclass
class ShopBonusSummary:
    """Bonus overview for all staff in a shop."""

    active_rules: int
    totals: StatusTotals
    this_month_amount: Decimal
    staff_bonuses: list[StaffBonusBreakdown]
    recent_records: list[BonusRecordView]

    @property
    def has_active_bonuses(self) -> bool:
        return self.active_rules > 0


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value != "all"


class BonusRecordService:
    """Service for bonus record operations within one business.

    Status transitions are batch operations: only records currently in an
    eligible source status are changed, the rest are skipped silently.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Status transitions
    # =========================================================================

    async def approve_records(
        self,
        business_id: UUID,
        actor: Actor,
        record_ids: list[UUID],
    ) -> ActionResult:
        """PENDING → APPROVED."""
        return await self._transition(
            business_id,
            actor,
            record_ids,
            BonusRecordStatus.APPROVED,
            values={
                "approved_at": datetime.now(),
                "approved_by_id": actor.user_id,
                "approved_by_name": actor.name,
            },
            action="BONUS_RECORDS_APPROVED",
            metadata={"count": len(record_ids)},
            failure="Failed to approve bonuses",
        )

    async def mark_paid(
        self,
        business_id: UUID,
        actor: Actor,
        record_ids: list[UUID],
        payment_ref: str | None = None,
    ) -> ActionResult:
        """PENDING/APPROVED → PAID, with an optional payout reference."""
        return await self._transition(
            business_id,
            actor,
            record_ids,
            BonusRecordStatus.PAID,
            values={
                "paid_at": datetime.now(),
                "paid_by_id": actor.user_id,
                "paid_by_name": actor.name,
                "payment_ref": payment_ref or None,
            },
            action="BONUS_RECORDS_PAID",
            metadata={"count": len(record_ids), "paymentRef": payment_ref},
            failure="Failed to mark bonuses as paid",
        )

    async def reject_records(
        self,
        business_id: UUID,
        actor: Actor,
        record_ids: list[UUID],
        reason: str | None = None,
    ) -> ActionResult:
        """PENDING/APPROVED → REJECTED. The reason replaces any notes."""
        reason = reason.strip() if reason else None
        return await self._transition(
            business_id,
            actor,
            record_ids,
            BonusRecordStatus.REJECTED,
            values={
                "rejected_at": datetime.now(),
                "rejected_by_id": actor.user_id,
                "notes": f"Rejected: {reason}" if reason else "Rejected by admin",
            },
            action="BONUS_RECORDS_REJECTED",
            metadata={"count": len(record_ids), "reason": reason},
            failure="Failed to reject bonuses",
        )

    async def _transition(
        self,
        business_id: UUID,
        actor: Actor,
        record_ids: list[UUID],
        to_status: BonusRecordStatus,
        values: dict[str, Any],
        action: str,
        metadata: dict[str, Any],
        failure: str,
    ) -> ActionResult:
        try:
            result = await self.session.execute(
                update(BonusRecord)
                .where(
                    BonusRecord.bonus_record_id.in_(record_ids),
                    BonusRecord.business_id == business_id,
                    BonusRecord.status.in_(BonusRecordStateMachine.eligible_sources(to_status)),
                )
                .values(status=to_status.value, **values)
            )
            updated = result.rowcount or 0

            await record_audit(
                self.session,
                actor_user_id=actor.user_id,
                action=action,
                entity_type="BonusRecord",
                entity_id=",".join(str(r) for r in record_ids),
                business_id=business_id,
                metadata={**metadata, "updated": updated},
            )
            await self.session.commit()
        except Exception:
            logger.exception("Error applying %s to bonus records", to_status.value)
            await self.session.rollback()
            return ActionResult.fail(failure)

        return ActionResult.ok({"updated": updated})

    # =========================================================================
    # Target batch
    # =========================================================================

    async def calculate_target_bonuses(
        self,
        business_id: UUID,
        actor: Actor | None = None,
        timezone: str | None = None,
        apply_tiers: bool = False,
        now: datetime | None = None,
    ) -> ActionResult:
        """Run target evaluation for a business and commit the results."""
        try:
            evaluator = TargetEvaluator(self.session, timezone=timezone, apply_tiers=apply_tiers)
            outcome = await evaluator.evaluate_targets(business_id, now=now)

            await record_audit(
                self.session,
                actor_user_id=actor.user_id if actor else None,
                action="TARGET_BONUSES_CALCULATED",
                entity_type="BonusRecord",
                entity_id="batch",
                business_id=business_id,
                metadata={
                    "bonusesCreated": outcome.bonuses_created,
                    "failures": len(outcome.failures),
                },
            )
            await self.session.commit()
        except Exception:
            logger.exception("Error calculating target bonuses for business %s", business_id)
            await self.session.rollback()
            return ActionResult.fail("Failed to calculate target bonuses")

        return ActionResult.ok(
            {
                "bonuses_created": outcome.bonuses_created,
                "already_awarded": outcome.already_awarded,
                "not_qualified": outcome.not_qualified,
                "skipped_rules": outcome.skipped_rules,
                "failures": outcome.failures,
            }
        )

    # =========================================================================
    # Listing and summaries
    # =========================================================================

    def _view_query(self):
        return (
            select(BonusRecord, BonusRule.name, Shop.name)
            .join(BonusRule, BonusRecord.bonus_rule_id == BonusRule.bonus_rule_id)
            .outerjoin(Shop, BonusRecord.shop_id == Shop.shop_id)
        )

    async def _views(self, query) -> list[BonusRecordView]:
        result = await self.session.execute(query)
        return [
            BonusRecordView(record=record, rule_name=rule_name, shop_name=shop_name or "Unknown")
            for record, rule_name, shop_name in result.all()
        ]

    async def list_records(
        self,
        business_id: UUID,
        filters: RecordFilters | None = None,
    ) -> list[BonusRecordView]:
        """List records newest first, optionally filtered."""
        filters = filters or RecordFilters()
        query = self._view_query().where(BonusRecord.business_id == business_id)

        if _is_set(filters.status):
            query = query.where(BonusRecord.status == filters.status)
        if filters.staff_member_id:
            query = query.where(BonusRecord.staff_member_id == filters.staff_member_id)
        if _is_set(filters.shop_id):
            query = query.where(BonusRecord.shop_id == filters.shop_id)
        if _is_set(filters.trigger_type):
            query = query.where(BonusRecord.trigger_type == filters.trigger_type)
        if filters.start_date:
            query = query.where(
                BonusRecord.created_at >= datetime.combine(filters.start_date, time.min)
            )
        if filters.end_date:
            query = query.where(
                BonusRecord.created_at <= datetime.combine(filters.end_date, time.max)
            )

        query = query.order_by(BonusRecord.created_at.desc()).limit(MAX_LISTED_RECORDS)
        return await self._views(query)

    async def status_totals(self, *criteria: Any) -> StatusTotals:
        """Count and sum records per status for the given criteria."""
        result = await self.session.execute(
            select(
                BonusRecord.status,
                func.count(BonusRecord.bonus_record_id),
                func.coalesce(func.sum(BonusRecord.amount), 0),
            )
            .where(*criteria)
            .group_by(BonusRecord.status)
        )
        totals = StatusTotals()
        for status, count, amount in result.all():
            totals.counts[status] = int(count)
            totals.amounts[status] = to_decimal(amount)
        return totals

    async def _period_total(self, window: PeriodWindow, *criteria: Any) -> tuple[int, Decimal]:
        row = (
            await self.session.execute(
                select(
                    func.count(BonusRecord.bonus_record_id),
                    func.coalesce(func.sum(BonusRecord.amount), 0),
                ).where(
                    *criteria,
                    BonusRecord.created_at >= window.start,
                    BonusRecord.created_at < window.exclusive_end,
                )
            )
        ).one()
        return int(row[0]), to_decimal(row[1])

    async def get_summary(
        self,
        business_id: UUID,
        now: datetime | None = None,
    ) -> BonusSummaryStats:
        """Business-wide rule and record statistics."""
        month = resolve_period(BonusPeriod.MONTHLY, now or local_now())

        rule_rows = await self.session.execute(
            select(BonusRule.is_active, func.count(BonusRule.bonus_rule_id))
            .where(BonusRule.business_id == business_id)
            .group_by(BonusRule.is_active)
        )
        rule_counts = {bool(active): int(count) for active, count in rule_rows.all()}

        totals = await self.status_totals(BonusRecord.business_id == business_id)
        month_count, month_amount = await self._period_total(
            month, BonusRecord.business_id == business_id
        )

        return BonusSummaryStats(
            total_rules=sum(rule_counts.values()),
            active_rules=rule_counts.get(True, 0),
            pending_bonuses=totals.count(BonusRecordStatus.PENDING),
            pending_amount=totals.amount(BonusRecordStatus.PENDING),
            approved_bonuses=totals.count(BonusRecordStatus.APPROVED),
            approved_amount=totals.amount(BonusRecordStatus.APPROVED),
            paid_bonuses=totals.count(BonusRecordStatus.PAID),
            paid_amount=totals.amount(BonusRecordStatus.PAID),
            total_bonuses_this_month=month_count,
            total_amount_this_month=month_amount,
        )

    async def get_staff_summary(
        self,
        business_id: UUID,
        staff_member_id: UUID,
        now: datetime | None = None,
    ) -> StaffBonusSummary | None:
        """Rules applying to a staff member and what they have earned.

        Returns None if the staff member is not part of the business.
        """
        member = (
            await self.session.execute(
                select(ShopMember)
                .join(Shop, ShopMember.shop_id == Shop.shop_id)
                .where(
                    ShopMember.shop_member_id == staff_member_id,
                    Shop.business_id == business_id,
                )
            )
        ).scalar_one_or_none()
        if member is None:
            return None

        rules = await RuleMatcher(self.session).find_rules_for_staff(
            business_id, member.role, member.shop_id
        )

        criteria = (
            BonusRecord.business_id == business_id,
            BonusRecord.staff_member_id == staff_member_id,
        )
        records = await self._views(
            self._view_query()
            .where(*criteria)
            .order_by(BonusRecord.created_at.desc())
            .limit(STAFF_RECENT_RECORDS)
        )
        totals = await self.status_totals(*criteria)
        month = resolve_period(BonusPeriod.MONTHLY, now or local_now())
        _, month_amount = await self._period_total(month, *criteria)

        return StaffBonusSummary(
            active_rules=rules,
            records=records,
            total_earned=sum(totals.amounts.values(), Decimal("0")),
            total_pending=totals.amount(BonusRecordStatus.PENDING),
            total_approved=totals.amount(BonusRecordStatus.APPROVED),
            total_paid=totals.amount(BonusRecordStatus.PAID),
            this_month_earned=month_amount,
        )

    async def get_shop_summary(
        self,
        business_id: UUID,
        shop_id: UUID,
        now: datetime | None = None,
    ) -> ShopBonusSummary:
        """Bonus overview for one shop, with a per-staff breakdown."""
        active_rules = await self.session.scalar(
            select(func.count(BonusRule.bonus_rule_id)).where(
                BonusRule.business_id == business_id,
                BonusRule.is_active.is_(True),
                or_(BonusRule.shop_id.is_(None), BonusRule.shop_id == shop_id),
            )
        ) or 0

        criteria = (
            BonusRecord.business_id == business_id,
            BonusRecord.shop_id == shop_id,
        )
        totals = await self.status_totals(*criteria)
        month = resolve_period(BonusPeriod.MONTHLY, now or local_now())
        _, month_amount = await self._period_total(month, *criteria)

        rows = await self.session.execute(
            select(
                BonusRecord.staff_member_id,
                BonusRecord.staff_name,
                BonusRecord.staff_role,
                BonusRecord.status,
                func.count(BonusRecord.bonus_record_id),
                func.coalesce(func.sum(BonusRecord.amount), 0),
            )
            .where(*criteria)
            .group_by(
                BonusRecord.staff_member_id,
                BonusRecord.staff_name,
                BonusRecord.staff_role,
                BonusRecord.status,
            )
        )
        staff: dict[UUID, StaffBonusBreakdown] = {}
        for staff_member_id, staff_name, staff_role, status, count, amount in rows.all():
            entry = staff.setdefault(
                staff_member_id,
                StaffBonusBreakdown(staff_member_id, staff_name, staff_role),
            )
            if status in BonusRecordStateMachine.OUTSTANDING:
                entry.pending += int(count)
                entry.pending_amount += to_decimal(amount)
            elif status == BonusRecordStatus.PAID:
                entry.paid += int(count)
                entry.paid_amount += to_decimal(amount)

        recent = await self._views(
            self._view_query()
            .where(*criteria)
            .order_by(BonusRecord.created_at.desc())
            .limit(SHOP_RECENT_RECORDS)
        )

        return ShopBonusSummary(
            active_rules=int(active_rules),
            totals=totals,
            this_month_amount=month_amount,
            staff_bonuses=sorted(staff.values(), key=lambda s: s.pending_amount, reverse=True),
            recent_records=recent,
        )
