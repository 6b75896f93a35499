"""Selection of active bonus rules for an event."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.calculators.types import TARGET_TRIGGERS, StaffRole, TriggerType
from bonus_engine.models import BonusRule


class RuleMatcher:
    """Finds the active rules an event or batch run must evaluate.

    A rule matches when it is active, belongs to the business, has the
    event's trigger type and the staff member's role, and is either
    business-wide (no shop) or scoped to the event's shop. Every match is
    returned; a single event can fire several rules.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_matching_rules(
        self,
        business_id: UUID,
        trigger_type: TriggerType | str,
        target_role: StaffRole | str,
        shop_id: UUID,
    ) -> list[BonusRule]:
        """Active rules matching a trigger event."""
        result = await self.session.execute(
            select(BonusRule)
            .where(
                BonusRule.business_id == business_id,
                BonusRule.trigger_type == TriggerType(trigger_type).value,
                BonusRule.target_role == StaffRole(target_role).value,
                BonusRule.is_active.is_(True),
                or_(BonusRule.shop_id.is_(None), BonusRule.shop_id == shop_id),
            )
            .order_by(BonusRule.created_at)
        )
        return list(result.scalars().all())

    async def find_target_rules(self, business_id: UUID) -> list[BonusRule]:
        """Active rules evaluated by the periodic target batch."""
        result = await self.session.execute(
            select(BonusRule)
            .where(
                BonusRule.business_id == business_id,
                BonusRule.trigger_type.in_([t.value for t in TARGET_TRIGGERS]),
                BonusRule.is_active.is_(True),
            )
            .order_by(BonusRule.created_at)
        )
        return list(result.scalars().all())

    async def find_rules_for_staff(
        self,
        business_id: UUID,
        target_role: StaffRole | str,
        shop_id: UUID,
    ) -> list[BonusRule]:
        """Active rules of any trigger type that apply to a staff member."""
        result = await self.session.execute(
            select(BonusRule)
            .where(
                BonusRule.business_id == business_id,
                BonusRule.target_role == StaffRole(target_role).value,
                BonusRule.is_active.is_(True),
                or_(BonusRule.shop_id.is_(None), BonusRule.shop_id == shop_id),
            )
            .order_by(BonusRule.created_at.desc())
        )
        return list(result.scalars().all())
