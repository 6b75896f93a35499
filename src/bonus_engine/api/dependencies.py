"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_engine.config import Settings, get_settings
from bonus_engine.database import init_db
from bonus_engine.services.results import Actor


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_uuid(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_business_id(
    x_business_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract business ID from header."""
    return _parse_uuid(x_business_id, "X-Business-ID")


async def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_name: Annotated[str | None, Header()] = None,
) -> Actor:
    """Extract the acting operator from headers."""
    return Actor(user_id=_parse_uuid(x_actor_id, "X-Actor-ID"), name=x_actor_name or None)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
BusinessId = Annotated[UUID, Depends(get_business_id)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
AppSettings = Annotated[Settings, Depends(get_settings)]
