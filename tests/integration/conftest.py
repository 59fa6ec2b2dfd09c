"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a SQLite file in the test's
temporary directory. Production runs on PostgreSQL; the review store only
uses portable SQL (guarded UPDATEs, a unique constraint and a JSON column),
so SQLite exercises the same code paths.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reviewgate.config import DatabaseConfig, ReviewConfig, ReviewGateConfig
from reviewgate.database.connection import get_engine, get_session_factory
from reviewgate.database.models.base import Base
from reviewgate.review.cycle import ReviewOrchestrator
from reviewgate.review.events import RecordingNotifier
from reviewgate.review.models import Feature
from reviewgate.review.store import ReviewStore


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'reviewgate.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite async engine with all tables.

    Yields:
        Configured AsyncEngine instance.
    """
    test_engine = get_engine(DatabaseConfig(url=database_url))

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def detail_dir(tmp_path: Path) -> Path:
    return tmp_path / "reviews"


@pytest_asyncio.fixture
async def store(
    session_factory: async_sessionmaker[AsyncSession],
    detail_dir: Path,
) -> ReviewStore:
    return ReviewStore(session_factory, detail_dir)


@pytest_asyncio.fixture
async def in_progress_feature(store: ReviewStore) -> Feature:
    """A feature that has left the backlog and is being implemented."""
    feature = await store.create_feature(
        title="Password reset",
        description="Users can reset their password by email.",
        feature_id="F-100",
        workdir="/tmp/does-not-matter",
    )
    return await store.save_feature(
        feature.model_copy(update={"status": "in_progress"}),
        expected_version=feature.version,
    )


@pytest.fixture
def config(detail_dir: Path) -> ReviewGateConfig:
    return ReviewGateConfig(review=ReviewConfig(max_iterations=3, detail_dir=detail_dir))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def orchestrator(
    store: ReviewStore,
    commit_provider,
    agent,
    notifier: RecordingNotifier,
    config: ReviewGateConfig,
) -> ReviewOrchestrator:
    """Orchestrator over the SQLite store with scripted collaborators."""
    return ReviewOrchestrator(
        store=store,
        commit_provider=commit_provider,
        agent=agent,
        notifier=notifier,
        config=config,
    )
