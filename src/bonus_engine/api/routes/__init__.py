"""API routes."""

from bonus_engine.api.routes.bonus_records import router as bonus_records_router
from bonus_engine.api.routes.bonus_rules import router as bonus_rules_router
from bonus_engine.api.routes.health import router as health_router

__all__ = ["bonus_records_router", "bonus_rules_router", "health_router"]
