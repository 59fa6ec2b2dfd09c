"""FastAPI application factory for reviewgate.

Creates the application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database and orchestrator lifecycle management
- Health, feature and event-stream routes

Example usage:
    >>> from reviewgate.config import ReviewGateConfig
    >>> from reviewgate.web.app import create_app
    >>>
    >>> app = create_app(ReviewGateConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewgate import __version__
from reviewgate.config import ReviewGateConfig
from reviewgate.database.connection import get_engine, get_session_factory
from reviewgate.logging import get_logger
from reviewgate.review.cycle import ReviewOrchestrator, build_orchestrator
from reviewgate.web.middleware import RequestLoggingMiddleware
from reviewgate.web.routes.events import EventBroadcaster, create_events_router
from reviewgate.web.routes.features import create_features_router
from reviewgate.web.routes.health import create_health_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the database pool and orchestrator for the app's lifetime.

    When ``create_app`` received an orchestrator it is used as is; otherwise
    the engine, session factory and production orchestrator are created
    here and torn down on shutdown.
    """
    config: ReviewGateConfig = app.state.config
    broadcaster: EventBroadcaster = app.state.broadcaster
    engine = None

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    if app.state.orchestrator is None:
        engine = get_engine(config.database)
        session_factory = get_session_factory(engine)
        app.state.session_factory = session_factory
        app.state.orchestrator = build_orchestrator(config, session_factory, notifier=broadcaster)
        logger.info(
            "database_pool_initialized",
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )

    yield

    logger.info("app_shutdown_begin")
    await app.state.orchestrator.wait_idle()
    await broadcaster.close()
    if engine is not None:
        await engine.dispose()
        logger.info("database_pool_disposed")


def create_app(
    config: ReviewGateConfig | None = None,
    orchestrator: ReviewOrchestrator | None = None,
    broadcaster: EventBroadcaster | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Application configuration; defaults are used if None.
        orchestrator: Pre-built orchestrator. When omitted, the lifespan
            handler builds one with the production collaborators and the
            app's event broadcaster as notifier.
        broadcaster: SSE broadcaster; a new one is created if None. Pass the
            same instance used as the orchestrator's notifier to stream its
            events.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = ReviewGateConfig()

    app = FastAPI(
        title="reviewgate",
        version=__version__,
        description="AI-gated iterative code review orchestration",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.broadcaster = broadcaster or EventBroadcaster()
    app.state.orchestrator = orchestrator
    app.state.session_factory = (
        orchestrator.store.session_factory if orchestrator is not None else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_features_router())
    app.include_router(create_events_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=__version__,
    )

    return app
