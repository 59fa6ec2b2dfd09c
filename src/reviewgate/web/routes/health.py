"""Health check endpoints for reviewgate.

``/health/`` is a plain liveness probe; ``/health/ready`` additionally runs a
trivial query against the review database.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from reviewgate.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response model.

    Attributes:
        status: "ok" or "unhealthy"
        database: "connected" or "disconnected"
    """

    status: str
    database: str


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession] | None:
    """Dependency returning the session factory from app state, if any."""
    return getattr(request.app.state, "session_factory", None)


def create_health_router() -> APIRouter:
    """Create the health check router.

    Routes:
        GET /health/ - Liveness check
        GET /health/ready - Readiness check with database verification
    """
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        session_factory: async_sessionmaker[AsyncSession] | None = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> dict[str, Any]:
        if session_factory is None:
            logger.warning("readiness_check_failed", database="not_configured")
            return {"status": "unhealthy", "database": "disconnected"}

        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                "readiness_check_failed",
                database="disconnected",
                error=str(exc),
            )
            return {"status": "unhealthy", "database": "disconnected"}

        logger.debug("readiness_check_passed", database="connected")
        return {"status": "ok", "database": "connected"}

    return router
