"""Bonus rule management: validation, CRUD, and listing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.calculators.tier_resolver import TierConfigError, parse_tiers, serialize_tiers
from bonus_engine.calculators.types import (
    BonusPeriod,
    CalculationType,
    StaffRole,
    TriggerType,
)
from bonus_engine.models import BonusRecord, BonusRule, Shop
from bonus_engine.services.audit import record_audit
from bonus_engine.services.results import ActionResult, Actor
from bonus_engine.services.state_machine import BonusRecordStateMachine, BonusRecordStatus

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "name",
    "description",
    "target_role",
    "shop_id",
    "trigger_type",
    "calculation_type",
    "value",
    "minimum_threshold",
    "maximum_cap",
    "target_amount",
    "tiers",
    "period",
    "is_active",
)

# Optional amounts where 0 means "not set"
_OPTIONAL_AMOUNTS = ("minimum_threshold", "maximum_cap", "target_amount")


class RuleValidationError(ValueError):
    """Raised when a bonus rule configuration is invalid."""


@dataclass
class BonusRuleSummary:
    """A rule with its record statistics."""

    rule: BonusRule
    shop_name: str | None
    total_bonuses_paid: int
    total_bonus_amount: Decimal
    active_records: int


def _parse_enum(enum_cls: type, value: Any, label: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError as e:
        raise RuleValidationError(f"Invalid {label}: {value}") from e


def _parse_amount(value: Any, label: str) -> Decimal:
    if isinstance(value, bool):
        raise RuleValidationError(f"{label} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise RuleValidationError(f"{label} must be a number") from e
    if not amount.is_finite():
        raise RuleValidationError(f"{label} must be a number")
    return amount


def normalize_rule_fields(fields: dict[str, Any], check_tiers: bool = True) -> dict[str, Any]:
    """Validate and normalize a complete set of rule fields.

    With ``check_tiers`` off the stored tier text is kept as is; the award
    path already falls back to the flat value when it cannot be parsed.

    Raises:
        RuleValidationError: If the configuration is invalid
    """
    out = dict(fields)

    name = (out.get("name") or "").strip()
    if not name:
        raise RuleValidationError("Bonus name is required")
    out["name"] = name

    description = out.get("description")
    out["description"] = description.strip() or None if description else None

    out["target_role"] = _parse_enum(StaffRole, out.get("target_role"), "target role")
    out["trigger_type"] = _parse_enum(TriggerType, out.get("trigger_type"), "trigger type")
    out["calculation_type"] = _parse_enum(
        CalculationType, out.get("calculation_type"), "calculation type"
    )
    out["period"] = _parse_enum(BonusPeriod, out.get("period") or "ONE_TIME", "period")

    if out.get("value") is None:
        raise RuleValidationError("Bonus value is required")
    value = _parse_amount(out["value"], "Bonus value")
    if value <= 0:
        raise RuleValidationError("Bonus value must be greater than 0")
    out["value"] = value

    for key in _OPTIONAL_AMOUNTS:
        raw = out.get(key)
        if raw is None or raw == "":
            out[key] = None
            continue
        amount = _parse_amount(raw, key.replace("_", " ").capitalize())
        if amount < 0:
            raise RuleValidationError(f"{key.replace('_', ' ').capitalize()} cannot be negative")
        out[key] = amount if amount > 0 else None

    if check_tiers:
        try:
            out["tiers"] = serialize_tiers(parse_tiers(out.get("tiers")))
        except TierConfigError as e:
            raise RuleValidationError(f"Invalid tiers: {e}") from e

    trigger = TriggerType(out["trigger_type"])
    needs_target = trigger in (TriggerType.TARGET_HIT, TriggerType.SHOP_PERFORMANCE)
    if needs_target and out["target_amount"] is None:
        raise RuleValidationError(f"{trigger.label} bonuses require a target amount")
    if (
        trigger is TriggerType.ZERO_DEFAULT
        and CalculationType(out["calculation_type"]) is CalculationType.PERCENTAGE
    ):
        raise RuleValidationError("Zero Default bonuses must use a fixed amount")

    out["is_active"] = bool(out.get("is_active", True))
    return out


class BonusRuleService:
    """Service for managing bonus rules within one business.

    Operations:
    - list_rules: Rules with paid/outstanding record statistics
    - create_rule: Validate and create a rule
    - update_rule: Partially update a rule, including activation toggle
    - delete_rule: Hard delete, or deactivate if records reference it
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rule(self, business_id: UUID, rule_id: UUID) -> BonusRule | None:
        result = await self.session.execute(
            select(BonusRule).where(
                BonusRule.bonus_rule_id == rule_id,
                BonusRule.business_id == business_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_rules(self, business_id: UUID) -> list[BonusRuleSummary]:
        """List rules newest first with their record statistics."""
        paid = BonusRecord.status == BonusRecordStatus.PAID.value
        outstanding = BonusRecord.status.in_(
            [s.value for s in BonusRecordStateMachine.OUTSTANDING]
        )
        stats = (
            select(
                BonusRecord.bonus_rule_id.label("rule_id"),
                func.sum(case((paid, 1), else_=0)).label("paid_count"),
                func.sum(case((paid, BonusRecord.amount), else_=0)).label("paid_amount"),
                func.sum(case((outstanding, 1), else_=0)).label("active_count"),
            )
            .where(BonusRecord.business_id == business_id)
            .group_by(BonusRecord.bonus_rule_id)
            .subquery()
        )

        result = await self.session.execute(
            select(
                BonusRule,
                Shop.name,
                stats.c.paid_count,
                stats.c.paid_amount,
                stats.c.active_count,
            )
            .outerjoin(Shop, BonusRule.shop_id == Shop.shop_id)
            .outerjoin(stats, stats.c.rule_id == BonusRule.bonus_rule_id)
            .where(BonusRule.business_id == business_id)
            .order_by(BonusRule.created_at.desc())
        )

        return [
            BonusRuleSummary(
                rule=rule,
                shop_name=shop_name,
                total_bonuses_paid=int(paid_count or 0),
                total_bonus_amount=Decimal(str(paid_amount or 0)),
                active_records=int(active_count or 0),
            )
            for rule, shop_name, paid_count, paid_amount, active_count in result.all()
        ]

    async def create_rule(
        self,
        business_id: UUID,
        actor: Actor,
        data: dict[str, Any],
    ) -> ActionResult:
        """Create a bonus rule."""
        try:
            fields = normalize_rule_fields(
                {key: data.get(key) for key in RULE_FIELDS if key in data}
            )
            await self._check_shop(business_id, fields.get("shop_id"))

            rule = BonusRule(
                business_id=business_id,
                created_by_id=actor.user_id,
                **fields,
            )
            self.session.add(rule)
            await self.session.flush()

            await record_audit(
                self.session,
                actor_user_id=actor.user_id,
                action="BONUS_RULE_CREATED",
                entity_type="BonusRule",
                entity_id=rule.bonus_rule_id,
                business_id=business_id,
                metadata={
                    "name": rule.name,
                    "targetRole": rule.target_role,
                    "triggerType": rule.trigger_type,
                    "calculationType": rule.calculation_type,
                    "value": rule.value,
                    "period": rule.period,
                },
            )
            await self.session.commit()
        except RuleValidationError as e:
            await self.session.rollback()
            return ActionResult.fail(str(e))
        except Exception:
            logger.exception("Error creating bonus rule")
            await self.session.rollback()
            return ActionResult.fail("Failed to create bonus rule")

        return ActionResult.ok({"id": rule.bonus_rule_id})

    async def update_rule(
        self,
        business_id: UUID,
        actor: Actor,
        rule_id: UUID,
        changes: dict[str, Any],
    ) -> ActionResult:
        """Apply a partial update to a rule.

        Only keys present in ``changes`` are modified; the merged rule is
        re-validated as a whole. Stored tiers are only re-parsed when the
        update replaces them.
        """
        try:
            rule = await self.get_rule(business_id, rule_id)
            if rule is None:
                return ActionResult.fail("Bonus rule not found")

            changes = {k: v for k, v in changes.items() if k in RULE_FIELDS}
            merged = {key: getattr(rule, key) for key in RULE_FIELDS}
            merged.update(changes)
            fields = normalize_rule_fields(merged, check_tiers="tiers" in changes)
            if "shop_id" in changes:
                await self._check_shop(business_id, fields.get("shop_id"))

            for key in changes:
                setattr(rule, key, fields[key])
            await self.session.flush()

            await record_audit(
                self.session,
                actor_user_id=actor.user_id,
                action="BONUS_RULE_UPDATED",
                entity_type="BonusRule",
                entity_id=rule_id,
                business_id=business_id,
                metadata={"changes": changes},
            )
            await self.session.commit()
        except RuleValidationError as e:
            await self.session.rollback()
            return ActionResult.fail(str(e))
        except Exception:
            logger.exception("Error updating bonus rule %s", rule_id)
            await self.session.rollback()
            return ActionResult.fail("Failed to update bonus rule")

        return ActionResult.ok()

    async def delete_rule(
        self,
        business_id: UUID,
        actor: Actor,
        rule_id: UUID,
    ) -> ActionResult:
        """Delete a rule, or deactivate it if any records reference it."""
        try:
            rule = await self.get_rule(business_id, rule_id)
            if rule is None:
                return ActionResult.fail("Bonus rule not found")

            record_count = await self.session.scalar(
                select(func.count(BonusRecord.bonus_record_id)).where(
                    BonusRecord.bonus_rule_id == rule_id
                )
            ) or 0
            had_records = record_count > 0
            rule_name = rule.name

            if had_records:
                rule.is_active = False
            else:
                await self.session.execute(
                    delete(BonusRule).where(BonusRule.bonus_rule_id == rule_id)
                )
            await self.session.flush()

            await record_audit(
                self.session,
                actor_user_id=actor.user_id,
                action="BONUS_RULE_DELETED",
                entity_type="BonusRule",
                entity_id=rule_id,
                business_id=business_id,
                metadata={"name": rule_name, "hadRecords": had_records},
            )
            await self.session.commit()
        except Exception:
            logger.exception("Error deleting bonus rule %s", rule_id)
            await self.session.rollback()
            return ActionResult.fail("Failed to delete bonus rule")

        return ActionResult.ok({"deactivated": had_records})

    async def _check_shop(self, business_id: UUID, shop_id: UUID | None) -> None:
        if shop_id is None:
            return
        owner = await self.session.scalar(
            select(Shop.business_id).where(Shop.shop_id == shop_id)
        )
        if owner != business_id:
            raise RuleValidationError("Shop not found in this business")
