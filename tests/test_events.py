"""Tests for business events and the bonus subscriber."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from bonus_engine.calculators.types import StaffRole, TriggerType
from bonus_engine.events import (
    AsyncEventEmitter,
    BonusEventSubscriber,
    CustomerCreated,
    EventCategory,
    EventMetadata,
    PaymentConfirmed,
    PurchaseFullyPaid,
    SaleCreated,
    StaffRef,
    to_bonus_events,
    trigger_bonus_calculation,
)
from bonus_engine.models import BonusRecord


def _staff(member=None) -> StaffRef:
    if member is None:
        return StaffRef(uuid4(), uuid4(), "Cora Collector", StaffRole.DEBT_COLLECTOR)
    return StaffRef(member.shop_member_id, member.user_id, member.user_name, StaffRole(member.role))


def _payment(business_id=None, shop_id=None, staff=None, **kwargs) -> PaymentConfirmed:
    return PaymentConfirmed(
        metadata=EventMetadata.create(business_id or uuid4()),
        shop_id=shop_id or uuid4(),
        staff=staff or _staff(),
        source_id=str(uuid4()),
        amount=Decimal(kwargs.pop("amount", "1000")),
        source_ref="PAY-0042",
        **kwargs,
    )


class TestEventTypes:
    """Test event payloads and trigger mapping."""

    def test_payment_triggers(self):
        assert _payment().bonus_triggers() == [TriggerType.COLLECTION]
        assert _payment(on_time=True, recovered=True).bonus_triggers() == [
            TriggerType.COLLECTION,
            TriggerType.ON_TIME_COLLECTION,
            TriggerType.RECOVERY,
        ]

    def test_categories(self):
        metadata = EventMetadata.create(uuid4())
        common = {
            "metadata": metadata,
            "shop_id": uuid4(),
            "staff": _staff(),
            "source_id": "x",
            "amount": Decimal("1"),
            "source_ref": None,
        }
        assert SaleCreated(**common).category == EventCategory.SALE
        assert CustomerCreated(**common).category == EventCategory.CUSTOMER
        assert PurchaseFullyPaid(**common).category == EventCategory.PAYMENT
        assert SaleCreated(**common).bonus_triggers() == [TriggerType.SALE]
        assert CustomerCreated(**common).bonus_triggers() == [TriggerType.CUSTOMER_CREATED]
        assert PurchaseFullyPaid(**common).bonus_triggers() == [TriggerType.FULL_PAYMENT]

    def test_to_dict_serializes_values(self):
        event = _payment(on_time=True)
        data = event.to_dict()

        assert data["event_type"] == "PaymentConfirmed"
        assert data["amount"] == "1000"
        assert data["staff"]["role"] == "DEBT_COLLECTOR"
        assert data["metadata"]["business_id"] == str(event.metadata.business_id)
        assert "PaymentConfirmed" in event.to_json()

    def test_to_bonus_events(self):
        event = _payment(on_time=True)

        bonus_events = to_bonus_events(event)

        assert [e.trigger_type for e in bonus_events] == [
            TriggerType.COLLECTION,
            TriggerType.ON_TIME_COLLECTION,
        ]
        first = bonus_events[0]
        assert first.business_id == event.metadata.business_id
        assert first.staff_member_id == event.staff.staff_member_id
        assert first.staff_role is StaffRole.DEBT_COLLECTOR
        assert first.base_amount == Decimal("1000")
        assert first.source_id == event.source_id
        assert first.source_ref == "PAY-0042"


class TestAsyncEventEmitter:
    """Test routing and handler isolation."""

    @pytest.mark.asyncio
    async def test_routes_by_type_and_category(self):
        emitter = AsyncEventEmitter()
        by_type: list[str] = []
        by_category: list[str] = []
        everything: list[str] = []

        async def on_payment(event):
            by_type.append(event.event_type)

        async def on_sale_category(event):
            by_category.append(event.event_type)

        async def on_any(event):
            everything.append(event.event_type)

        emitter.on(PaymentConfirmed, on_payment)
        emitter.on_category(EventCategory.SALE, on_sale_category)
        emitter.on_all(on_any)

        await emitter.emit(_payment())

        assert by_type == ["PaymentConfirmed"]
        assert by_category == []
        assert everything == ["PaymentConfirmed"]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self):
        emitter = AsyncEventEmitter()
        received: list[str] = []

        async def broken(event):
            raise RuntimeError("handler down")

        async def healthy(event):
            received.append(event.source_id)

        emitter.on_all(broken)
        emitter.on_all(healthy)

        event = _payment()
        errors = await emitter.emit(event)

        assert received == [event.source_id]
        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)

    @pytest.mark.asyncio
    async def test_off_unregisters(self):
        emitter = AsyncEventEmitter()
        received: list[str] = []

        async def handler(event):
            received.append(event.event_type)

        emitter.on_all(handler)
        emitter.off(handler)
        await emitter.emit(_payment())

        assert received == []

    @pytest.mark.asyncio
    async def test_batch_dispatches_on_clean_exit(self):
        emitter = AsyncEventEmitter()
        received: list[str] = []

        async def handler(event):
            received.append(event.source_id)

        emitter.on_all(handler)
        first, second = _payment(), _payment()

        async with emitter.batch() as batch:
            await batch.add(first)
            await batch.add(second)
            assert received == []

        assert received == [first.source_id, second.source_id]
        assert batch.errors == []

    @pytest.mark.asyncio
    async def test_batch_discarded_on_error(self):
        emitter = AsyncEventEmitter()
        received: list[str] = []

        async def handler(event):
            received.append(event.source_id)

        emitter.on_all(handler)

        with pytest.raises(ValueError):
            async with emitter.batch() as batch:
                await batch.add(_payment())
                raise ValueError("transaction rolled back")

        assert received == []
        await emitter.emit(_payment())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_concurrent_batches_are_independent(self):
        emitter = AsyncEventEmitter()
        received: list[str] = []

        async def handler(event):
            received.append(event.source_id)

        emitter.on_all(handler)
        first, second, rolled_back = _payment(), _payment(), _payment()

        async def commit_in_batch(event):
            async with emitter.batch() as batch:
                await batch.add(event)
                # Stands in for awaiting the session commit
                await asyncio.sleep(0.01)

        async def roll_back_in_batch(event):
            with pytest.raises(RuntimeError):
                async with emitter.batch() as batch:
                    await asyncio.sleep(0)
                    await batch.add(event)
                    await asyncio.sleep(0.02)
                    raise RuntimeError("commit failed")

        await asyncio.gather(
            commit_in_batch(first),
            commit_in_batch(second),
            roll_back_in_batch(rolled_back),
        )

        assert sorted(received) == sorted([first.source_id, second.source_id])


class TestBonusEventSubscriber:
    """Test that business events produce bonus records."""

    @pytest.mark.asyncio
    async def test_payment_awards_each_trigger(
        self, session, session_factory, make_rule, test_business, test_shops, test_staff
    ):
        await make_rule(name="Collection", value=Decimal("2"))
        await make_rule(
            name="On time",
            trigger_type="ON_TIME_COLLECTION",
            calculation_type="FIXED_AMOUNT",
            value=Decimal("25"),
        )
        await make_rule(name="Recovery", trigger_type="RECOVERY", value=Decimal("10"))

        emitter = AsyncEventEmitter()
        BonusEventSubscriber(session_factory).register(emitter)

        errors = await emitter.emit(
            _payment(
                business_id=test_business.business_id,
                shop_id=test_shops["main"].shop_id,
                staff=_staff(test_staff["collector"]),
                on_time=True,
            )
        )

        assert errors == []
        result = await session.execute(select(BonusRecord.trigger_type, BonusRecord.amount))
        awards = {trigger: amount for trigger, amount in result.all()}
        assert awards == {
            "COLLECTION": Decimal("20.00"),
            "ON_TIME_COLLECTION": Decimal("25.00"),
        }

    @pytest.mark.asyncio
    async def test_sale_event(
        self, session, session_factory, make_rule, test_business, test_shops, test_staff
    ):
        await make_rule(
            name="Sale",
            target_role="SALES_STAFF",
            trigger_type="SALE",
            calculation_type="FIXED_AMOUNT",
            value=Decimal("15"),
        )
        emitter = AsyncEventEmitter()
        BonusEventSubscriber(session_factory).register(emitter)

        await emitter.emit(
            SaleCreated(
                metadata=EventMetadata.create(test_business.business_id),
                shop_id=test_shops["main"].shop_id,
                staff=_staff(test_staff["sales"]),
                source_id="purchase-1",
                amount=Decimal("3000"),
                source_ref="INV-9",
            )
        )

        record = (await session.execute(select(BonusRecord))).scalar_one()
        assert record.trigger_type == "SALE"
        assert record.amount == Decimal("15.00")
        assert record.source_id == "purchase-1"

    @pytest.mark.asyncio
    async def test_trigger_never_raises(self, make_event, caplog):
        def broken_factory():
            raise RuntimeError("database unavailable")

        created = await trigger_bonus_calculation(broken_factory, make_event())

        assert created == 0
        assert "Bonus calculation failed" in caplog.text
