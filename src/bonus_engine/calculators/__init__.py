"""Bonus calculation engine."""

from bonus_engine.calculators.award_calculator import AwardCalculator, CapEnforcer
from bonus_engine.calculators.period_resolver import resolve_period
from bonus_engine.calculators.rule_matcher import RuleMatcher
from bonus_engine.calculators.target_evaluator import TargetEvaluationResult, TargetEvaluator
from bonus_engine.calculators.tier_resolver import TierConfigError, parse_tiers, resolve_rate

__all__ = [
    "AwardCalculator",
    "CapEnforcer",
    "RuleMatcher",
    "TargetEvaluationResult",
    "TargetEvaluator",
    "TierConfigError",
    "parse_tiers",
    "resolve_period",
    "resolve_rate",
]
