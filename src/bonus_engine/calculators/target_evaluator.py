"""Periodic evaluation of target-based bonus rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.calculators.award_calculator import record_from_draft, to_decimal
from bonus_engine.calculators.period_resolver import describe_period, local_now, resolve_period
from bonus_engine.calculators.rule_matcher import RuleMatcher
from bonus_engine.calculators.tier_resolver import compute_raw_award, resolve_rate, round_money
from bonus_engine.calculators.types import (
    AwardDraft,
    CalculationType,
    PeriodWindow,
    StaffRole,
    TriggerType,
)
from bonus_engine.models import (
    BonusRecord,
    BonusRule,
    Customer,
    Payment,
    Purchase,
    Shop,
    ShopMember,
)

logger = logging.getLogger(__name__)

# Nominal base for ZERO_DEFAULT awards, which have no monetary base
ZERO_DEFAULT_BASE = Decimal("1")


@dataclass
class TargetEvaluationResult:
    """Outcome of one target evaluation run."""

    bonuses_created: int = 0
    already_awarded: int = 0
    not_qualified: int = 0
    skipped_rules: list[UUID] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Qualification:
    """Whether a staff member met a rule's target, and on what base."""

    qualifies: bool
    base_amount: Decimal


class TargetEvaluator:
    """Evaluates TARGET_HIT, ZERO_DEFAULT and SHOP_PERFORMANCE rules.

    Run explicitly (admin action or scheduler), not per event. Each
    staff/rule pairing is evaluated in its own SAVEPOINT so one failure
    does not stop the batch. Re-running within a period creates nothing new:
    existing records are skipped and the partial unique index on
    (rule, staff member, period) rejects racing duplicates.

    Tiers are not applied here unless ``apply_tiers`` is set.
    """

    def __init__(
        self,
        session: AsyncSession,
        timezone: str | None = None,
        apply_tiers: bool = False,
    ):
        self.session = session
        self.timezone = timezone
        self.apply_tiers = apply_tiers
        self.rule_matcher = RuleMatcher(session)

    async def evaluate_targets(
        self,
        business_id: UUID,
        now: datetime | None = None,
    ) -> TargetEvaluationResult:
        """Evaluate every active target-based rule for a business."""
        reference = now or local_now(self.timezone)
        result = TargetEvaluationResult()

        for rule in await self.rule_matcher.find_target_rules(business_id):
            if not self._is_evaluable(rule):
                result.skipped_rules.append(rule.bonus_rule_id)
                continue

            window = resolve_period(rule.period, reference)
            for member in await self.eligible_staff(business_id, rule):
                try:
                    async with self.session.begin_nested():
                        created = await self._evaluate_member(rule, member, window)
                except IntegrityError:
                    logger.info(
                        "Target bonus for rule %s / staff %s already recorded for %s",
                        rule.bonus_rule_id,
                        member.shop_member_id,
                        window.start.date(),
                    )
                    result.already_awarded += 1
                    continue
                except Exception as e:
                    logger.exception(
                        "Target evaluation failed for rule %s / staff %s",
                        rule.bonus_rule_id,
                        member.shop_member_id,
                    )
                    result.failures.append(f"{rule.bonus_rule_id}/{member.shop_member_id}: {e}")
                    continue

                if created is None:
                    result.already_awarded += 1
                elif created:
                    result.bonuses_created += 1
                else:
                    result.not_qualified += 1

        return result

    def _is_evaluable(self, rule: BonusRule) -> bool:
        trigger = TriggerType(rule.trigger_type)
        if trigger is TriggerType.ZERO_DEFAULT:
            if CalculationType(rule.calculation_type) is CalculationType.PERCENTAGE:
                logger.warning(
                    "Skipping percentage ZERO_DEFAULT rule %s: it has no monetary base",
                    rule.bonus_rule_id,
                )
                return False
            return True
        if rule.target_amount is None:
            logger.warning(
                "Skipping %s rule %s: no target amount configured",
                trigger.value,
                rule.bonus_rule_id,
            )
            return False
        return True

    async def eligible_staff(self, business_id: UUID, rule: BonusRule) -> list[ShopMember]:
        """Active staff in the business holding the rule's target role."""
        query = (
            select(ShopMember)
            .join(Shop, ShopMember.shop_id == Shop.shop_id)
            .where(
                Shop.business_id == business_id,
                ShopMember.role == rule.target_role,
                ShopMember.is_active.is_(True),
            )
            .order_by(ShopMember.created_at)
        )
        if rule.shop_id is not None:
            query = query.where(ShopMember.shop_id == rule.shop_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _evaluate_member(
        self,
        rule: BonusRule,
        member: ShopMember,
        window: PeriodWindow,
    ) -> bool | None:
        """Award a target bonus to one staff member if they qualify.

        Returns None if already awarded for the period, True if a record was
        created, False if the member did not qualify.
        """
        if await self.has_existing_record(rule.bonus_rule_id, member.shop_member_id, window):
            return None

        qualification = await self.qualify(rule, member, window)
        if not qualification.qualifies:
            return False

        draft = self._draft(rule, member, window, qualification.base_amount)
        if draft is None:
            return False

        self.session.add(record_from_draft(draft))
        await self.session.flush()
        logger.info(
            "Target bonus %s awarded to staff member %s under rule %s",
            draft.amount,
            member.shop_member_id,
            rule.bonus_rule_id,
        )
        return True

    async def has_existing_record(
        self,
        rule_id: UUID,
        staff_member_id: UUID,
        window: PeriodWindow,
    ) -> bool:
        existing = await self.session.scalar(
            select(BonusRecord.bonus_record_id)
            .where(
                BonusRecord.bonus_rule_id == rule_id,
                BonusRecord.staff_member_id == staff_member_id,
                BonusRecord.period_start == window.start,
                BonusRecord.period_end == window.end,
            )
            .limit(1)
        )
        return existing is not None

    async def qualify(
        self,
        rule: BonusRule,
        member: ShopMember,
        window: PeriodWindow,
    ) -> Qualification:
        """Compute the period metric for a member and compare it to the rule."""
        trigger = TriggerType(rule.trigger_type)

        if trigger is TriggerType.ZERO_DEFAULT:
            defaults = await self.defaults_in_period(member.shop_member_id, window)
            return Qualification(defaults == 0, ZERO_DEFAULT_BASE)

        target = to_decimal(rule.target_amount)

        if trigger is TriggerType.TARGET_HIT:
            metric = await self.staff_target_metric(member, window)
        elif trigger is TriggerType.SHOP_PERFORMANCE:
            metric = await self.shop_collections(member.shop_id, window)
        else:
            raise ValueError(f"{trigger.value} is not a target-based trigger")

        if metric is None:
            return Qualification(False, Decimal("0"))
        return Qualification(metric >= target, metric)

    async def staff_target_metric(
        self,
        member: ShopMember,
        window: PeriodWindow,
    ) -> Decimal | None:
        """Collections for collectors, shop sales for sales staff.

        Other roles have no per-staff metric.
        """
        role = StaffRole(member.role)
        if role is StaffRole.DEBT_COLLECTOR:
            return await self.collector_collections(member.shop_member_id, window)
        if role is StaffRole.SALES_STAFF:
            return await self.shop_sales(member.shop_id, window)
        return None

    async def collector_collections(self, collector_id: UUID, window: PeriodWindow) -> Decimal:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.collector_id == collector_id,
                Payment.is_confirmed.is_(True),
                Payment.confirmed_at >= window.start,
                Payment.confirmed_at < window.exclusive_end,
            )
        )
        return to_decimal(total)

    async def shop_sales(self, shop_id: UUID, window: PeriodWindow) -> Decimal:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(Purchase.total_amount), 0))
            .join(Customer, Purchase.customer_id == Customer.customer_id)
            .where(
                Customer.shop_id == shop_id,
                Purchase.created_at >= window.start,
                Purchase.created_at < window.exclusive_end,
            )
        )
        return to_decimal(total)

    async def shop_collections(self, shop_id: UUID, window: PeriodWindow) -> Decimal:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(Payment.amount), 0))
            .join(Purchase, Payment.purchase_id == Purchase.purchase_id)
            .join(Customer, Purchase.customer_id == Customer.customer_id)
            .where(
                Customer.shop_id == shop_id,
                Payment.is_confirmed.is_(True),
                Payment.confirmed_at >= window.start,
                Payment.confirmed_at < window.exclusive_end,
            )
        )
        return to_decimal(total)

    async def defaults_in_period(self, collector_id: UUID, window: PeriodWindow) -> int:
        count = await self.session.scalar(
            select(func.count(Purchase.purchase_id))
            .join(Customer, Purchase.customer_id == Customer.customer_id)
            .where(
                Customer.assigned_collector_id == collector_id,
                Purchase.status == "DEFAULTED",
                Purchase.updated_at >= window.start,
                Purchase.updated_at < window.exclusive_end,
            )
        )
        return int(count or 0)

    def _draft(
        self,
        rule: BonusRule,
        member: ShopMember,
        window: PeriodWindow,
        base_amount: Decimal,
    ) -> AwardDraft | None:
        rate = to_decimal(rule.value)
        if self.apply_tiers:
            rate = resolve_rate(rule.tiers, base_amount, rate, rule.bonus_rule_id)

        award = compute_raw_award(rule.calculation_type, rate, base_amount)
        if rule.maximum_cap is not None:
            award = min(award, to_decimal(rule.maximum_cap))
        if award <= 0:
            return None

        amount = round_money(award)
        if amount <= 0:
            return None

        is_percentage = CalculationType(rule.calculation_type) is CalculationType.PERCENTAGE
        return AwardDraft(
            business_id=rule.business_id,
            shop_id=member.shop_id,
            bonus_rule_id=rule.bonus_rule_id,
            staff_member_id=member.shop_member_id,
            staff_user_id=member.user_id,
            staff_name=member.user_name or "Unknown",
            staff_role=member.role,
            trigger_type=rule.trigger_type,
            base_amount=base_amount,
            amount=amount,
            period=window,
            rate=to_decimal(rule.value) if is_percentage else None,
            source_id=None,
            source_ref=describe_period(rule.period, window),
        )
