"""Audit trail recording."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.models import AuditLog


async def record_audit(
    session: AsyncSession,
    actor_user_id: UUID | None,
    action: str,
    entity_type: str,
    entity_id: str | UUID,
    metadata: dict[str, Any] | None = None,
    business_id: UUID | None = None,
) -> AuditLog:
    """Add an audit entry to the current transaction."""
    entry = AuditLog(
        business_id=business_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        metadata_json=_jsonable(metadata) if metadata is not None else None,
    )
    session.add(entry)
    await session.flush()
    return entry


def _jsonable(obj: Any) -> Any:
    """Recursively convert values for JSON storage."""
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj
    if hasattr(obj, "value") and isinstance(getattr(obj, "value"), str):
        return obj.value
    return str(obj)
