"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bonus_engine import __version__
from bonus_engine.api.routes import bonus_records_router, bonus_rules_router, health_router
from bonus_engine.config import get_settings
from bonus_engine.database import dispose_db, init_db
from bonus_engine.events import AsyncEventEmitter, BonusEventSubscriber

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    _, session_factory = init_db()
    emitter = AsyncEventEmitter()
    BonusEventSubscriber(session_factory, timezone=get_settings().bonus_timezone).register(
        emitter
    )
    app.state.events = emitter
    yield
    # Shutdown
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="BNPL Bonus Engine API",
        description="Staff incentive rules, awards and payouts",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(bonus_rules_router, prefix="/api/v1")
    app.include_router(bonus_records_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
