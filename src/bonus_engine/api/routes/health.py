"""Health check endpoints.

Readiness requires the bonus tables to be queryable, so a deployment that
has not run ``bonus-engine init-db`` yet is kept out of rotation.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.api.dependencies import DbSession
from bonus_engine.models import BonusRecord, BonusRule

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    bonus_schema: str


async def bonus_tables_ready(db: AsyncSession) -> bool:
    """Whether the rule and record tables can be read."""
    try:
        await db.execute(select(BonusRule.bonus_rule_id).limit(1))
        await db.execute(select(BonusRecord.bonus_record_id).limit(1))
    except Exception:
        logger.warning("Bonus tables are not readable", exc_info=True)
        await db.rollback()
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check API, database and bonus schema health."""
    db_status = "unhealthy"
    schema_status = "unknown"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception:
        logger.warning("Database health check failed", exc_info=True)

    if db_status == "healthy":
        schema_status = "ready" if await bonus_tables_ready(db) else "missing"

    return HealthResponse(
        status="healthy" if schema_status == "ready" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        bonus_schema=schema_status,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(db: DbSession) -> JSONResponse:
    """Ready once the bonus tables exist."""
    if not await bonus_tables_ready(db):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "reason": "bonus tables unavailable"},
        )
    return JSONResponse(content={"status": "ready"})


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
