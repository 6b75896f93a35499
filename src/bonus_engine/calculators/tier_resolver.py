"""Tiered rate resolution and award arithmetic."""

from __future__ import annotations

import json
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Sequence

from bonus_engine.calculators.types import CalculationType, Tier

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class TierConfigError(ValueError):
    """Raised when a tier list cannot be parsed or violates its invariants."""


def _to_decimal(raw: Any, field_name: str, index: int) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise TierConfigError(f"Tier {index + 1}: '{field_name}' must be a number")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise TierConfigError(f"Tier {index + 1}: '{field_name}' must be a number") from e
    if not value.is_finite():
        raise TierConfigError(f"Tier {index + 1}: '{field_name}' must be finite")
    return value


def parse_tiers(raw: str | Sequence[dict[str, Any]] | None) -> list[Tier]:
    """Parse and validate a tier list.

    Accepts the stored JSON text or an already-decoded list of
    ``{"min", "max", "value"}`` objects. A ``max`` of 0 means unbounded.

    Raises:
        TierConfigError: If the input is malformed
    """
    if raw is None or raw == "":
        return []

    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TierConfigError(f"Tiers are not valid JSON: {e.msg}") from e
    else:
        data = raw

    if not isinstance(data, list):
        raise TierConfigError("Tiers must be a list")

    tiers: list[Tier] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise TierConfigError(f"Tier {index + 1} must be an object")
        missing = {"min", "max", "value"} - item.keys()
        if missing:
            raise TierConfigError(
                f"Tier {index + 1} is missing {', '.join(sorted(missing))}"
            )

        min_amount = _to_decimal(item["min"], "min", index)
        max_amount = _to_decimal(item["max"], "max", index)
        value = _to_decimal(item["value"], "value", index)

        if min_amount < 0:
            raise TierConfigError(f"Tier {index + 1}: 'min' cannot be negative")
        if value <= 0:
            raise TierConfigError(f"Tier {index + 1}: 'value' must be greater than 0")
        if max_amount != 0 and max_amount < min_amount:
            raise TierConfigError(f"Tier {index + 1}: 'max' must be 0 or >= 'min'")

        tiers.append(
            Tier(
                min_amount=min_amount,
                max_amount=None if max_amount == 0 else max_amount,
                value=value,
            )
        )

    return tiers


def serialize_tiers(tiers: Sequence[Tier]) -> str | None:
    """Serialize tiers to the stored JSON form (None for no tiers)."""
    if not tiers:
        return None
    return json.dumps([t.to_dict() for t in tiers])


def find_tier(tiers: Sequence[Tier], base_amount: Decimal) -> Tier | None:
    """First tier whose range includes the base amount."""
    for tier in tiers:
        if tier.matches(base_amount):
            return tier
    return None


def resolve_rate(
    raw_tiers: str | None,
    base_amount: Decimal,
    fallback_value: Decimal,
    rule_id: Any = None,
) -> Decimal:
    """Resolve the effective rate/value for a base amount.

    Falls back to the rule's flat value when tiers are absent, unparseable,
    or no tier matches. Unparseable tiers are logged, never raised.
    """
    if not raw_tiers:
        return fallback_value

    try:
        tiers = parse_tiers(raw_tiers)
    except TierConfigError as e:
        logger.warning(
            "Ignoring malformed tiers on bonus rule %s, using flat value: %s",
            rule_id,
            e,
        )
        return fallback_value

    tier = find_tier(tiers, base_amount)
    if tier is None:
        return fallback_value
    return tier.value


def compute_raw_award(
    calculation_type: CalculationType | str,
    value: Decimal,
    base_amount: Decimal,
) -> Decimal:
    """Apply a rate or fixed value to a base amount (unrounded)."""
    calculation_type = CalculationType(calculation_type)
    if calculation_type is CalculationType.PERCENTAGE:
        return base_amount * value / HUNDRED
    if calculation_type is CalculationType.FIXED_AMOUNT:
        return value
    raise ValueError(f"Unhandled calculation type: {calculation_type}")


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
