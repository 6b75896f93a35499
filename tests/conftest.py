"""Pytest fixtures for bonus engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from bonus_engine.calculators.types import BonusEvent, StaffRole, TriggerType
from bonus_engine.database import create_engine_for_url, init_models, make_session_factory
from bonus_engine.models import (
    BonusRecord,
    BonusRule,
    Business,
    Customer,
    Payment,
    Purchase,
    Shop,
    ShopMember,
)
from bonus_engine.services.results import Actor

# Use in-memory SQLite for tests (with async support)
# Advisory locks are PostgreSQL-only and are skipped here
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Wednesday, mid-month
NOW = datetime(2024, 1, 17, 10, 30)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh test database per test; services commit."""
    engine = create_engine_for_url(TEST_DATABASE_URL)

    await init_models(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def actor() -> Actor:
    return Actor(user_id=uuid4(), name="Ada Admin")


@pytest_asyncio.fixture
async def test_business(session: AsyncSession) -> Business:
    """Create a test business."""
    business = Business(business_id=uuid4(), name="Acme Credit", slug=f"acme-{uuid4().hex[:8]}")
    session.add(business)
    await session.commit()
    return business


@pytest_asyncio.fixture
async def test_shops(session: AsyncSession, test_business: Business) -> dict[str, Shop]:
    """Create two shops in the test business."""
    main = Shop(shop_id=uuid4(), business_id=test_business.business_id, name="Main Street")
    branch = Shop(shop_id=uuid4(), business_id=test_business.business_id, name="Harbour Branch")
    session.add_all([main, branch])
    await session.commit()
    return {"main": main, "branch": branch}


@pytest_asyncio.fixture
async def test_staff(
    session: AsyncSession, test_shops: dict[str, Shop]
) -> dict[str, ShopMember]:
    """Create staff members in the main shop."""
    main = test_shops["main"].shop_id
    staff = {
        "collector": ShopMember(
            shop_member_id=uuid4(),
            shop_id=main,
            user_id=uuid4(),
            user_name="Cora Collector",
            role=StaffRole.DEBT_COLLECTOR.value,
        ),
        "collector2": ShopMember(
            shop_member_id=uuid4(),
            shop_id=main,
            user_id=uuid4(),
            user_name="Carl Collector",
            role=StaffRole.DEBT_COLLECTOR.value,
        ),
        "sales": ShopMember(
            shop_member_id=uuid4(),
            shop_id=main,
            user_id=uuid4(),
            user_name="Sam Sales",
            role=StaffRole.SALES_STAFF.value,
        ),
        "accountant": ShopMember(
            shop_member_id=uuid4(),
            shop_id=main,
            user_id=uuid4(),
            user_name="Alex Accounts",
            role=StaffRole.ACCOUNTANT.value,
        ),
    }
    session.add_all(staff.values())
    await session.commit()
    return staff


@pytest.fixture
def make_rule(
    session: AsyncSession, test_business: Business
) -> Callable[..., Awaitable[BonusRule]]:
    """Factory for bonus rules; defaults to a 2% collector collection rule."""

    async def _make(**overrides: Any) -> BonusRule:
        fields: dict[str, Any] = {
            "bonus_rule_id": uuid4(),
            "business_id": test_business.business_id,
            "name": "Collection bonus",
            "target_role": StaffRole.DEBT_COLLECTOR.value,
            "trigger_type": TriggerType.COLLECTION.value,
            "calculation_type": "PERCENTAGE",
            "value": Decimal("2"),
            "period": "ONE_TIME",
            "is_active": True,
        }
        fields.update(overrides)
        rule = BonusRule(**fields)
        session.add(rule)
        await session.commit()
        return rule

    return _make


@pytest.fixture
def make_event(
    test_business: Business,
    test_shops: dict[str, Shop],
    test_staff: dict[str, ShopMember],
) -> Callable[..., BonusEvent]:
    """Factory for trigger events credited to a staff member."""

    def _make(
        base_amount: Decimal | str = "1000",
        trigger_type: TriggerType = TriggerType.COLLECTION,
        staff: str = "collector",
        shop: str = "main",
        source_id: str | None = None,
    ) -> BonusEvent:
        member = test_staff[staff]
        return BonusEvent(
            business_id=test_business.business_id,
            shop_id=test_shops[shop].shop_id,
            trigger_type=trigger_type,
            staff_member_id=member.shop_member_id,
            staff_user_id=member.user_id,
            staff_name=member.user_name or "Unknown",
            staff_role=StaffRole(member.role),
            source_id=source_id or str(uuid4()),
            base_amount=Decimal(str(base_amount)),
            source_ref="PAY-0001",
        )

    return _make


@pytest.fixture
def make_record(
    session: AsyncSession,
    test_business: Business,
    test_shops: dict[str, Shop],
    test_staff: dict[str, ShopMember],
) -> Callable[..., Awaitable[BonusRecord]]:
    """Factory for bonus records under an existing rule."""

    async def _make(rule: BonusRule, **overrides: Any) -> BonusRecord:
        member = test_staff[overrides.pop("staff", "collector")]
        fields: dict[str, Any] = {
            "bonus_record_id": uuid4(),
            "business_id": test_business.business_id,
            "shop_id": test_shops["main"].shop_id,
            "bonus_rule_id": rule.bonus_rule_id,
            "staff_member_id": member.shop_member_id,
            "staff_user_id": member.user_id,
            "staff_name": member.user_name,
            "staff_role": member.role,
            "trigger_type": rule.trigger_type,
            "source_id": str(uuid4()),
            "base_amount": Decimal("1000.00"),
            "amount": Decimal("20.00"),
            "period_start": datetime(2020, 1, 1),
            "period_end": datetime(2099, 12, 31, 23, 59, 59),
            "status": "PENDING",
        }
        fields.update(overrides)
        record = BonusRecord(**fields)
        session.add(record)
        await session.commit()
        return record

    return _make


@pytest.fixture
def add_payment(
    session: AsyncSession,
    test_shops: dict[str, Shop],
) -> Callable[..., Awaitable[Payment]]:
    """Factory for a confirmed payment on a fresh purchase."""

    async def _add(
        amount: Decimal | str,
        collector: ShopMember | None = None,
        confirmed_at: datetime = NOW,
        shop: str = "main",
        is_confirmed: bool = True,
    ) -> Payment:
        customer = Customer(
            customer_id=uuid4(),
            shop_id=test_shops[shop].shop_id,
            full_name="Test Customer",
        )
        session.add(customer)
        await session.flush()
        purchase = Purchase(
            purchase_id=uuid4(),
            customer_id=customer.customer_id,
            total_amount=Decimal("5000.00"),
        )
        session.add(purchase)
        await session.flush()
        payment = Payment(
            payment_id=uuid4(),
            purchase_id=purchase.purchase_id,
            collector_id=collector.shop_member_id if collector else None,
            amount=Decimal(str(amount)),
            is_confirmed=is_confirmed,
            confirmed_at=confirmed_at if is_confirmed else None,
        )
        session.add(payment)
        await session.commit()
        return payment

    return _add


@pytest.fixture
def add_purchase(
    session: AsyncSession,
    test_shops: dict[str, Shop],
) -> Callable[..., Awaitable[Purchase]]:
    """Factory for a purchase, optionally assigned to a collector."""

    async def _add(
        total_amount: Decimal | str,
        created_at: datetime = NOW,
        status: str = "ACTIVE",
        collector: ShopMember | None = None,
        shop: str = "main",
    ) -> Purchase:
        customer = Customer(
            customer_id=uuid4(),
            shop_id=test_shops[shop].shop_id,
            full_name="Test Customer",
            assigned_collector_id=collector.shop_member_id if collector else None,
        )
        session.add(customer)
        await session.flush()
        purchase = Purchase(
            purchase_id=uuid4(),
            customer_id=customer.customer_id,
            total_amount=Decimal(str(total_amount)),
            status=status,
            created_at=created_at,
            updated_at=created_at,
        )
        session.add(purchase)
        await session.commit()
        return purchase

    return _add
