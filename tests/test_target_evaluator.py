"""Tests for periodic target-based bonus evaluation."""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from bonus_engine.calculators.target_evaluator import ZERO_DEFAULT_BASE, TargetEvaluator
from bonus_engine.models import BonusRecord

# Wednesday, mid-month
NOW = datetime(2024, 1, 17, 10, 30)

pytestmark = pytest.mark.asyncio


async def _records(session, rule=None) -> list[BonusRecord]:
    query = select(BonusRecord)
    if rule is not None:
        query = query.where(BonusRecord.bonus_rule_id == rule.bonus_rule_id)
    result = await session.execute(query)
    return list(result.scalars().all())


def _target_rule(**overrides):
    fields = {
        "name": "Monthly collection target",
        "trigger_type": "TARGET_HIT",
        "calculation_type": "FIXED_AMOUNT",
        "value": Decimal("100"),
        "target_amount": Decimal("1000"),
        "period": "MONTHLY",
    }
    fields.update(overrides)
    return fields


class TestTargetHit:
    """Test per-staff target rules."""

    async def test_collector_meets_target(self, session, make_rule, add_payment, test_staff):
        rule = await make_rule(**_target_rule())
        await add_payment("700", collector=test_staff["collector"])
        await add_payment("500", collector=test_staff["collector"], confirmed_at=datetime(2024, 1, 2))
        await add_payment("400", collector=test_staff["collector2"])

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)
        await session.commit()

        assert result.bonuses_created == 1
        assert result.not_qualified == 1
        assert result.failures == []

        [record] = await _records(session, rule)
        assert record.staff_member_id == test_staff["collector"].shop_member_id
        assert record.amount == Decimal("100.00")
        assert record.base_amount == Decimal("1200.00")
        assert record.rate is None
        assert record.source_id is None
        assert record.source_ref == "MONTHLY target: 2024-01-01 - 2024-01-31"
        assert record.period_start == datetime(2024, 1, 1)
        assert record.period_end == datetime(2024, 1, 31, 23, 59, 59)
        assert record.status == "PENDING"

    async def test_only_confirmed_payments_in_window_count(
        self, session, make_rule, add_payment, test_staff
    ):
        rule = await make_rule(**_target_rule())
        collector = test_staff["collector"]
        await add_payment("600", collector=collector, confirmed_at=datetime(2024, 1, 31, 23, 59, 59))
        await add_payment("600", collector=collector, is_confirmed=False)
        await add_payment("600", collector=collector, confirmed_at=datetime(2024, 2, 1))
        await add_payment("600", collector=collector, confirmed_at=datetime(2023, 12, 31, 23, 59))

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.not_qualified == 2

    async def test_percentage_target_uses_metric_as_base(
        self, session, make_rule, add_payment, test_staff
    ):
        rule = await make_rule(
            **_target_rule(calculation_type="PERCENTAGE", value=Decimal("1.5"))
        )
        await add_payment("2000", collector=test_staff["collector"])

        await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        [record] = await _records(session, rule)
        assert record.amount == Decimal("30.00")
        assert record.rate == Decimal("1.5")

    async def test_cap_clamps_target_award(self, session, make_rule, add_payment, test_staff):
        rule = await make_rule(
            **_target_rule(
                calculation_type="PERCENTAGE",
                value=Decimal("10"),
                maximum_cap=Decimal("50"),
            )
        )
        await add_payment("2000", collector=test_staff["collector"])

        await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        [record] = await _records(session, rule)
        assert record.amount == Decimal("50.00")

    async def test_tiers_ignored_unless_enabled(
        self, session, make_rule, add_payment, test_staff
    ):
        tiers = '[{"min": 0, "max": 0, "value": 5}]'
        rule = await make_rule(
            **_target_rule(calculation_type="PERCENTAGE", value=Decimal("1"), tiers=tiers)
        )
        await add_payment("2000", collector=test_staff["collector"])

        await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)
        [record] = await _records(session, rule)
        assert record.amount == Decimal("20.00")

    async def test_tiers_applied_when_enabled(
        self, session, make_rule, add_payment, test_staff
    ):
        tiers = '[{"min": 0, "max": 0, "value": 5}]'
        rule = await make_rule(
            **_target_rule(calculation_type="PERCENTAGE", value=Decimal("1"), tiers=tiers)
        )
        await add_payment("2000", collector=test_staff["collector"])

        await TargetEvaluator(session, apply_tiers=True).evaluate_targets(rule.business_id, now=NOW)
        [record] = await _records(session, rule)
        assert record.amount == Decimal("100.00")
        assert record.rate == Decimal("1")

    async def test_sales_staff_measured_on_shop_sales(
        self, session, make_rule, add_purchase, test_staff
    ):
        rule = await make_rule(**_target_rule(target_role="SALES_STAFF"))
        await add_purchase("600")
        await add_purchase("600")
        await add_purchase("5000", shop="branch")

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 1
        [record] = await _records(session, rule)
        assert record.staff_member_id == test_staff["sales"].shop_member_id
        assert record.base_amount == Decimal("1200.00")

    async def test_roles_without_metric_never_qualify(
        self, session, make_rule, add_payment, test_staff
    ):
        rule = await make_rule(**_target_rule(target_role="ACCOUNTANT", target_amount=Decimal("1")))
        await add_payment("5000", collector=test_staff["collector"])

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.not_qualified == 1

    async def test_inactive_staff_excluded(self, session, make_rule, add_payment, test_staff):
        rule = await make_rule(**_target_rule())
        collector = test_staff["collector"]
        await add_payment("5000", collector=collector)
        collector.is_active = False
        await session.commit()

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.not_qualified == 1


class TestIdempotency:
    """Re-running within a period must not duplicate awards."""

    async def test_second_run_creates_nothing(self, session, make_rule, add_payment, test_staff):
        rule = await make_rule(**_target_rule())
        await add_payment("1500", collector=test_staff["collector"])

        evaluator = TargetEvaluator(session)
        first = await evaluator.evaluate_targets(rule.business_id, now=NOW)
        await session.commit()
        second = await evaluator.evaluate_targets(rule.business_id, now=datetime(2024, 1, 30))
        await session.commit()

        assert first.bonuses_created == 1
        assert second.bonuses_created == 0
        assert second.already_awarded == 1
        assert len(await _records(session, rule)) == 1

    async def test_new_period_awards_again(self, session, make_rule, add_payment, test_staff):
        rule = await make_rule(**_target_rule())
        collector = test_staff["collector"]
        await add_payment("1500", collector=collector)
        await add_payment("1500", collector=collector, confirmed_at=datetime(2024, 2, 10))

        evaluator = TargetEvaluator(session)
        await evaluator.evaluate_targets(rule.business_id, now=NOW)
        february = await evaluator.evaluate_targets(rule.business_id, now=datetime(2024, 2, 20))

        assert february.bonuses_created == 1
        assert len(await _records(session, rule)) == 2

    async def test_rejected_award_still_blocks_rerun(
        self, session, make_rule, make_record, add_payment, test_staff
    ):
        rule = await make_rule(**_target_rule())
        await make_record(
            rule,
            source_id=None,
            status="REJECTED",
            period_start=datetime(2024, 1, 1),
            period_end=datetime(2024, 1, 31, 23, 59, 59),
        )
        await add_payment("1500", collector=test_staff["collector"])

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.already_awarded == 1

    async def test_unique_index_rejects_duplicate_target_record(
        self, session, make_rule, make_record
    ):
        rule = await make_rule(**_target_rule())
        period = {
            "source_id": None,
            "period_start": datetime(2024, 1, 1),
            "period_end": datetime(2024, 1, 31, 23, 59, 59),
        }
        await make_record(rule, **period)

        with pytest.raises(IntegrityError):
            await make_record(rule, **period)

    async def test_event_records_not_constrained_by_period(self, session, make_rule, make_record):
        rule = await make_rule()
        await make_record(rule, source_id="pay-1")
        await make_record(rule, source_id="pay-2")

        assert len(await _records(session, rule)) == 2


class TestZeroDefault:
    """Test ZERO_DEFAULT rules for debt collectors."""

    async def test_collector_without_defaults_awarded(
        self, session, make_rule, add_purchase, test_staff
    ):
        rule = await make_rule(
            **_target_rule(trigger_type="ZERO_DEFAULT", target_amount=None, value=Decimal("50"))
        )
        await add_purchase("800", status="DEFAULTED", collector=test_staff["collector"])
        # A default outside the period does not count
        await add_purchase(
            "800",
            status="DEFAULTED",
            collector=test_staff["collector2"],
            created_at=datetime(2023, 12, 20),
        )

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 1
        assert result.not_qualified == 1
        [record] = await _records(session, rule)
        assert record.staff_member_id == test_staff["collector2"].shop_member_id
        assert record.amount == Decimal("50.00")
        assert record.base_amount == ZERO_DEFAULT_BASE

    async def test_percentage_zero_default_skipped(self, session, make_rule, test_staff, caplog):
        rule = await make_rule(
            **_target_rule(
                trigger_type="ZERO_DEFAULT",
                target_amount=None,
                calculation_type="PERCENTAGE",
            )
        )

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.skipped_rules == [rule.bonus_rule_id]
        assert result.bonuses_created == 0
        assert "ZERO_DEFAULT" in caplog.text


class TestShopPerformance:
    """Test shop-wide collection targets."""

    async def test_every_eligible_member_awarded(
        self, session, make_rule, add_payment, test_staff
    ):
        rule = await make_rule(
            **_target_rule(trigger_type="SHOP_PERFORMANCE", target_amount=Decimal("2000"))
        )
        await add_payment("1500", collector=test_staff["collector"])
        await add_payment("700")
        await add_payment("9000", shop="branch")

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 2
        records = await _records(session, rule)
        assert {r.staff_member_id for r in records} == {
            test_staff["collector"].shop_member_id,
            test_staff["collector2"].shop_member_id,
        }
        assert all(r.base_amount == Decimal("2200.00") for r in records)

    async def test_shop_below_target(self, session, make_rule, add_payment, test_staff):
        rule = await make_rule(
            **_target_rule(trigger_type="SHOP_PERFORMANCE", target_amount=Decimal("2000"))
        )
        await add_payment("1999.99", collector=test_staff["collector"])

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.not_qualified == 2


class TestRuleSelection:
    """Test which rules a run evaluates."""

    async def test_rule_without_target_amount_skipped(self, session, make_rule, test_staff):
        rule = await make_rule(**_target_rule(target_amount=None))

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.skipped_rules == [rule.bonus_rule_id]

    async def test_event_rules_and_inactive_rules_ignored(
        self, session, make_rule, add_payment, test_staff
    ):
        event_rule = await make_rule()
        await make_rule(**_target_rule(is_active=False))
        await add_payment("5000", collector=test_staff["collector"])

        result = await TargetEvaluator(session).evaluate_targets(event_rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.not_qualified == 0
        assert result.skipped_rules == []

    async def test_shop_scoped_rule_limits_staff(
        self, session, make_rule, add_payment, test_staff, test_shops
    ):
        rule = await make_rule(**_target_rule(shop_id=test_shops["branch"].shop_id))
        await add_payment("5000", collector=test_staff["collector"])

        result = await TargetEvaluator(session).evaluate_targets(rule.business_id, now=NOW)

        assert result.bonuses_created == 0
        assert result.not_qualified == 0
