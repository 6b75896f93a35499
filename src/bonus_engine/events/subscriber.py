"""Bridges business events to the bonus award calculator."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bonus_engine.calculators.award_calculator import AwardCalculator
from bonus_engine.calculators.types import BonusEvent
from bonus_engine.events.emitter import AsyncEventEmitter
from bonus_engine.events.types import (
    BonusTriggeringEvent,
    CustomerCreated,
    PaymentConfirmed,
    PurchaseFullyPaid,
    SaleCreated,
)

logger = logging.getLogger(__name__)


async def trigger_bonus_calculation(
    session_factory: async_sessionmaker[AsyncSession],
    event: BonusEvent,
    timezone: str | None = None,
) -> int:
    """Run award calculation for one trigger in its own transaction.

    Never raises: bonus calculation must not fail the action that triggered
    it. Returns the number of records created.
    """
    try:
        async with session_factory() as session:
            try:
                records = await AwardCalculator(session, timezone=timezone).calculate_award(event)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except Exception:
        logger.exception(
            "Bonus calculation failed for %s event %s",
            event.trigger_type.value,
            event.source_id,
        )
        return 0

    return len(records)


def to_bonus_events(event: BonusTriggeringEvent) -> list[BonusEvent]:
    """Expand a business event into one BonusEvent per trigger it fires."""
    return [
        BonusEvent(
            business_id=event.metadata.business_id,
            shop_id=event.shop_id,
            trigger_type=trigger,
            staff_member_id=event.staff.staff_member_id,
            staff_user_id=event.staff.user_id,
            staff_name=event.staff.name,
            staff_role=event.staff.role,
            source_id=event.source_id,
            base_amount=event.amount,
            source_ref=event.source_ref,
        )
        for trigger in event.bonus_triggers()
    ]


class BonusEventSubscriber:
    """Event handler that awards bonuses for confirmed payments, sales,
    new customers and fully paid purchases.

    Usage:
        subscriber = BonusEventSubscriber(session_factory)
        subscriber.register(emitter)
    """

    EVENT_TYPES = (PaymentConfirmed, PurchaseFullyPaid, SaleCreated, CustomerCreated)

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timezone: str | None = None,
    ):
        self.session_factory = session_factory
        self.timezone = timezone

    def register(self, emitter: AsyncEventEmitter) -> None:
        emitter.on(list(self.EVENT_TYPES), self)

    async def __call__(self, event: BonusTriggeringEvent) -> None:
        for bonus_event in to_bonus_events(event):
            await trigger_bonus_calculation(
                self.session_factory,
                bonus_event,
                timezone=self.timezone,
            )
