"""Event-triggered bonus award calculation."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.calculators.period_resolver import local_now, resolve_period
from bonus_engine.calculators.rule_matcher import RuleMatcher
from bonus_engine.calculators.tier_resolver import (
    compute_raw_award,
    resolve_rate,
    round_money,
)
from bonus_engine.calculators.types import (
    AwardDraft,
    BonusEvent,
    CalculationType,
    PeriodWindow,
)
from bonus_engine.database import acquire_xact_lock
from bonus_engine.models import BonusRecord, BonusRule
from bonus_engine.services.state_machine import BonusRecordStateMachine, BonusRecordStatus

logger = logging.getLogger(__name__)


def to_decimal(value: object) -> Decimal:
    """Normalize a DB aggregate (None, float, Decimal) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def cap_lock_key(rule_id: UUID, staff_member_id: UUID, window: PeriodWindow) -> str:
    return f"bonus-cap:{rule_id}:{staff_member_id}:{window.start.isoformat()}"


def record_from_draft(draft: AwardDraft) -> BonusRecord:
    """Build a PENDING bonus record from a draft."""
    return BonusRecord(
        business_id=draft.business_id,
        shop_id=draft.shop_id,
        bonus_rule_id=draft.bonus_rule_id,
        staff_member_id=draft.staff_member_id,
        staff_user_id=draft.staff_user_id,
        staff_name=draft.staff_name,
        staff_role=draft.staff_role,
        trigger_type=draft.trigger_type,
        source_id=draft.source_id,
        source_ref=draft.source_ref,
        base_amount=draft.base_amount,
        rate=draft.rate,
        amount=draft.amount,
        period_start=draft.period.start,
        period_end=draft.period.end,
        status=BonusRecordStatus.PENDING.value,
    )


class CapEnforcer:
    """Clamps awards to a rule's per-period maximum.

    Prior PENDING, APPROVED and PAID awards for the same rule, staff member
    and period count towards the cap.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def awarded_total(
        self,
        rule_id: UUID,
        staff_member_id: UUID,
        window: PeriodWindow,
    ) -> Decimal:
        """Sum of cap-counted awards already made in the period."""
        total = await self.session.scalar(
            select(func.coalesce(func.sum(BonusRecord.amount), 0)).where(
                BonusRecord.bonus_rule_id == rule_id,
                BonusRecord.staff_member_id == staff_member_id,
                BonusRecord.period_start == window.start,
                BonusRecord.period_end == window.end,
                BonusRecord.status.in_(
                    [s.value for s in BonusRecordStateMachine.CAP_COUNTED]
                ),
            )
        )
        return to_decimal(total)

    async def clamp(
        self,
        rule: BonusRule,
        staff_member_id: UUID,
        window: PeriodWindow,
        raw_award: Decimal,
    ) -> Decimal | None:
        """Clamp an award to the remaining headroom.

        Returns None when the cap is already reached.
        """
        if rule.maximum_cap is None:
            return raw_award

        cap = to_decimal(rule.maximum_cap)
        current = await self.awarded_total(rule.bonus_rule_id, staff_member_id, window)
        if current >= cap:
            return None
        return min(raw_award, cap - current)


class AwardCalculator:
    """Computes and persists bonus awards for a single trigger event.

    For each matching rule:
    1. Resolve the period window for "now"
    2. Skip if the base amount is below the rule's minimum threshold
    3. Apply the tier-resolved (or flat) rate/value to the base amount
    4. Clamp to the rule's per-period cap
    5. Skip non-positive awards, round to cents, emit a PENDING record

    Each rule is persisted in its own SAVEPOINT; a failure on one rule is
    logged and does not affect the others.
    """

    def __init__(self, session: AsyncSession, timezone: str | None = None):
        self.session = session
        self.timezone = timezone
        self.rule_matcher = RuleMatcher(session)
        self.cap_enforcer = CapEnforcer(session)

    async def draft_for_rule(
        self,
        rule: BonusRule,
        event: BonusEvent,
        window: PeriodWindow,
    ) -> AwardDraft | None:
        """Compute the award a rule grants for an event, or None."""
        base_amount = event.base_amount

        if rule.minimum_threshold is not None and base_amount < to_decimal(rule.minimum_threshold):
            return None

        rate = resolve_rate(rule.tiers, base_amount, to_decimal(rule.value), rule.bonus_rule_id)
        award = compute_raw_award(rule.calculation_type, rate, base_amount)

        clamped = await self.cap_enforcer.clamp(rule, event.staff_member_id, window, award)
        if clamped is None or clamped <= 0:
            return None

        amount = round_money(clamped)
        if amount <= 0:
            return None

        is_percentage = CalculationType(rule.calculation_type) is CalculationType.PERCENTAGE
        return AwardDraft(
            business_id=event.business_id,
            shop_id=event.shop_id,
            bonus_rule_id=rule.bonus_rule_id,
            staff_member_id=event.staff_member_id,
            staff_user_id=event.staff_user_id,
            staff_name=event.staff_name,
            staff_role=event.staff_role.value,
            trigger_type=event.trigger_type.value,
            base_amount=base_amount,
            amount=amount,
            period=window,
            rate=to_decimal(rule.value) if is_percentage else None,
            source_id=event.source_id,
            source_ref=event.source_ref,
        )

    async def calculate_award(
        self,
        event: BonusEvent,
        now: datetime | None = None,
    ) -> list[BonusRecord]:
        """Evaluate all matching rules for an event and persist the awards.

        Returns the records created. Failures on individual rules are logged
        and skipped; the caller owns the surrounding transaction.
        """
        rules = await self.rule_matcher.find_matching_rules(
            business_id=event.business_id,
            trigger_type=event.trigger_type,
            target_role=event.staff_role,
            shop_id=event.shop_id,
        )
        if not rules:
            return []

        reference = now or local_now(self.timezone)
        created: list[BonusRecord] = []

        for rule in rules:
            window = resolve_period(rule.period, reference)
            try:
                async with self.session.begin_nested():
                    if rule.maximum_cap is not None:
                        await acquire_xact_lock(
                            self.session,
                            cap_lock_key(rule.bonus_rule_id, event.staff_member_id, window),
                        )
                    draft = await self.draft_for_rule(rule, event, window)
                    if draft is None:
                        continue
                    record = record_from_draft(draft)
                    self.session.add(record)
                    await self.session.flush()
            except Exception:
                logger.exception(
                    "Bonus rule %s failed for %s event %s",
                    rule.bonus_rule_id,
                    event.trigger_type.value,
                    event.source_id,
                )
                continue

            logger.info(
                "Awarded %s to staff member %s under rule %s (%s)",
                record.amount,
                event.staff_member_id,
                rule.bonus_rule_id,
                event.trigger_type.value,
            )
            created.append(record)

        return created
