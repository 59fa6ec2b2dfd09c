"""Pytest fixtures for end-to-end review cycle tests.

Each test gets a fresh SQLite database, a review store, a recording
notifier and a factory for orchestrators wired with the scripted commit
provider and agent from the top-level conftest.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator, Callable

import git
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


@pytest_asyncio.fixture
async def e2e_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = get_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'e2e.db'}"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(e2e_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(e2e_engine)


@pytest.fixture
def detail_dir(tmp_path: Path) -> Path:
    return tmp_path / "reviews"


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession], detail_dir: Path) -> ReviewStore:
    return ReviewStore(session_factory, detail_dir)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_orchestrator(
    store: ReviewStore,
    commit_provider,
    agent,
    notifier: RecordingNotifier,
    detail_dir: Path,
) -> Callable[..., ReviewOrchestrator]:
    """Build an orchestrator; keyword arguments override ReviewConfig fields.

    ``store``, ``commit_provider``, ``notifier``, ``status_resolver`` and
    ``config`` may also be passed to replace the defaults.
    """

    def _make(**overrides: Any) -> ReviewOrchestrator:
        review_store = overrides.pop("store", store)
        provider = overrides.pop("commit_provider", commit_provider)
        event_notifier = overrides.pop("notifier", notifier)
        status_resolver = overrides.pop("status_resolver", None)
        config = overrides.pop("config", None)
        if config is None:
            review = {"max_iterations": 3, "detail_dir": detail_dir, **overrides}
            config = ReviewGateConfig(review=ReviewConfig(**review))
        return ReviewOrchestrator(
            store=review_store,
            commit_provider=provider,
            agent=agent,
            status_resolver=status_resolver,
            notifier=event_notifier,
            config=config,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., ReviewOrchestrator]) -> ReviewOrchestrator:
    return make_orchestrator()


@pytest.fixture
def start_feature(store: ReviewStore) -> Callable[..., Any]:
    """Create a feature and move it into ``in_progress``."""

    async def _start(feature_id: str = "F-1", **fields: Any) -> Feature:
        fields.setdefault("workdir", "/repo")
        feature = await store.create_feature(
            title=fields.pop("title", "Password reset"),
            description=fields.pop("description", "Users reset their password by email."),
            feature_id=feature_id,
            **fields,
        )
        return await store.save_feature(
            feature.model_copy(update={"status": "in_progress"}),
            expected_version=feature.version,
        )

    return _start


@pytest.fixture
def git_repo(tmp_path: Path) -> git.Repo:
    """A real repository with an initial commit and user identity."""
    path = tmp_path / "repo"
    path.mkdir()
    repo = git.Repo.init(path)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    (path / "README.md").write_text("# Test Repository\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")
    return repo
