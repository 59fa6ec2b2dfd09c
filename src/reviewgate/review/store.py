"""Durable review store.

The ReviewStore is the single source of truth for feature status and review
history. It translates between the frozen domain models in
``reviewgate.review.models`` and the ORM rows, and enforces:

- compare-and-swap on the feature version for every feature write,
- append-only, gap-free iteration history bounded by the feature's cap,
- atomic recording of a finished iteration together with the feature
  transition it causes.

Long-form detail documents are written as Markdown files below a detail
directory; the Iteration record keeps a relative reference to its document.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewgate.database.models.feature import FeatureRecord
from reviewgate.database.models.iteration import IterationRecord
from reviewgate.database.queries.feature import (
    advance_iteration_counter,
    compare_and_swap_feature,
    create_feature,
    get_feature,
    insert_iteration,
    list_features,
)
from reviewgate.review.errors import (
    FeatureNotFoundError,
    OutOfOrderIterationError,
    StoreIOError,
    VersionConflictError,
)
from reviewgate.review.models import (
    Feature,
    FeatureStatus,
    Finding,
    Iteration,
    PendingReview,
    ReviewDecision,
    ReviewSpec,
    ReviewStatus,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


# ---------------------------------------------------------------------------
# Row <-> model translation
# ---------------------------------------------------------------------------


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; all stored times are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def iteration_from_record(record: IterationRecord) -> Iteration:
    """Build an Iteration from its database row."""
    return Iteration(
        iteration_number=record.iteration_number,
        completed_at=_aware(record.completed_at),
        reviewer=record.reviewer,
        decision=ReviewDecision(record.decision),
        commit_sha=record.commit_sha,
        diff=record.diff,
        findings=tuple(Finding.model_validate(f) for f in record.findings or []),
        summary=record.summary,
        rejection_reason=record.rejection_reason,
        detail_ref=record.detail_ref,
    )


def iteration_values(iteration: Iteration) -> dict[str, Any]:
    """Column values for inserting an Iteration."""
    return {
        "iteration_number": iteration.iteration_number,
        "completed_at": iteration.completed_at,
        "reviewer": iteration.reviewer,
        "decision": iteration.decision.value,
        "commit_sha": iteration.commit_sha,
        "diff": iteration.diff,
        "findings": [f.model_dump(mode="json") for f in iteration.findings],
        "summary": iteration.summary,
        "rejection_reason": iteration.rejection_reason,
        "detail_ref": iteration.detail_ref,
    }


def feature_from_record(record: FeatureRecord) -> Feature:
    """Build a Feature (with embedded ReviewSpec) from its database row."""
    review: ReviewSpec | None = None
    if record.review_status is not None:
        pending: PendingReview | None = None
        if record.pending_iteration_number is not None:
            pending = PendingReview(
                iteration_number=record.pending_iteration_number,
                started_at=_aware(record.pending_started_at),
                commit_sha=record.pending_commit_sha,
                diff=record.pending_diff,
            )
        review = ReviewSpec(
            status=ReviewStatus(record.review_status),
            current_iteration=record.review_current_iteration,
            max_iterations=record.review_max_iterations,
            iterations=tuple(iteration_from_record(r) for r in record.iterations),
            pending=pending,
        )

    return Feature(
        id=record.id,
        title=record.title,
        description=record.description,
        status=record.status,
        workdir=record.workdir,
        skip_tests=record.skip_tests,
        implementation_output=record.implementation_output,
        review=review,
        version=record.version,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def feature_values(feature: Feature) -> dict[str, Any]:
    """Column values for a feature write, excluding the iteration counter.

    The counter only moves together with an iteration insert.
    """
    spec = feature.review
    pending = spec.pending if spec is not None else None
    return {
        "title": feature.title,
        "description": feature.description,
        "status": feature.status,
        "workdir": feature.workdir,
        "skip_tests": feature.skip_tests,
        "implementation_output": feature.implementation_output,
        "review_status": spec.status.value if spec is not None else None,
        "review_max_iterations": spec.max_iterations if spec is not None else None,
        "pending_iteration_number": pending.iteration_number if pending else None,
        "pending_started_at": pending.started_at if pending else None,
        "pending_commit_sha": pending.commit_sha if pending else None,
        "pending_diff": pending.diff if pending else None,
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ReviewStore:
    """Persistence of features, review specs and iteration history.

    Attributes:
        session_factory: Callable producing AsyncSession instances.
        detail_dir: Root directory for iteration detail documents.
    """

    def __init__(self, session_factory: SessionFactory, detail_dir: Path) -> None:
        self.session_factory = session_factory
        self.detail_dir = detail_dir
        self._logger = logger.bind(component="ReviewStore")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_feature(self, feature_id: str) -> Feature:
        """Load a feature with its full review history.

        Raises:
            FeatureNotFoundError: If the feature does not exist.
            StoreIOError: If the database read fails.
        """
        try:
            async with self.session_factory() as session:
                record = await get_feature(session, feature_id)
                if record is None:
                    raise FeatureNotFoundError(feature_id)
                return feature_from_record(record)
        except SQLAlchemyError as e:
            self._logger.error("feature_load_failed", feature_id=feature_id, error=str(e))
            raise StoreIOError(f"Failed to load feature {feature_id}: {e}") from e

    async def list_features(self, status: str | None = None) -> list[Feature]:
        """List features, newest first, optionally filtered by status."""
        try:
            async with self.session_factory() as session:
                records = await list_features(session, status_filter=status)
                return [feature_from_record(r) for r in records]
        except SQLAlchemyError as e:
            raise StoreIOError(f"Failed to list features: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_feature(
        self,
        title: str,
        description: str = "",
        feature_id: str | None = None,
        workdir: str | None = None,
        skip_tests: bool = False,
    ) -> Feature:
        """Create a feature in the backlog.

        Raises:
            StoreIOError: If the insert fails (including duplicate ids).
        """
        try:
            async with self.session_factory() as session:
                record = await create_feature(
                    session,
                    title=title,
                    description=description,
                    feature_id=feature_id,
                    workdir=workdir,
                    skip_tests=skip_tests,
                    status=FeatureStatus.BACKLOG.value,
                )
                return feature_from_record(record)
        except SQLAlchemyError as e:
            raise StoreIOError(f"Failed to create feature: {e}") from e

    async def save_feature(self, feature: Feature, expected_version: int) -> Feature:
        """Write a feature with compare-and-swap on its version token.

        The iteration history is not touched; use ``append_iteration`` or
        ``record_iteration`` for that.

        Args:
            feature: The new feature state.
            expected_version: Version the caller loaded.

        Returns:
            The stored feature carrying its new version.

        Raises:
            VersionConflictError: If another writer got there first.
            FeatureNotFoundError: If the feature does not exist.
            StoreIOError: If the database write fails.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    swapped = await compare_and_swap_feature(
                        session,
                        feature.id,
                        expected_version,
                        feature_values(feature),
                    )
                    if not swapped:
                        await self._raise_write_conflict(
                            session, feature.id, expected_version
                        )
                    record = await get_feature(session, feature.id)
                    saved = feature_from_record(record)
        except SQLAlchemyError as e:
            self._logger.error("feature_save_failed", feature_id=feature.id, error=str(e))
            raise StoreIOError(f"Failed to save feature {feature.id}: {e}") from e

        self._logger.info(
            "feature_saved",
            feature_id=feature.id,
            status=saved.status,
            version=saved.version,
        )
        return saved

    async def append_iteration(
        self,
        feature_id: str,
        iteration: Iteration,
        expected_iteration_number: int,
    ) -> int:
        """Append one iteration to a feature's history.

        Args:
            feature_id: Owning feature.
            iteration: The finished, immutable iteration.
            expected_iteration_number: Must equal the stored
                ``current_iteration + 1`` and the iteration's own number.

        Returns:
            The feature's new version token.

        Raises:
            OutOfOrderIterationError: On a duplicate, gap, or cap overflow.
            FeatureNotFoundError: If the feature does not exist.
            StoreIOError: If the database write fails.
        """
        if iteration.iteration_number != expected_iteration_number:
            raise OutOfOrderIterationError(feature_id, expected_iteration_number)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    advanced = await advance_iteration_counter(
                        session, feature_id, expected_iteration_number
                    )
                    if not advanced:
                        record = await get_feature(session, feature_id)
                        if record is None:
                            raise FeatureNotFoundError(feature_id)
                        raise OutOfOrderIterationError(
                            feature_id,
                            expected_iteration_number,
                            record.review_current_iteration,
                        )
                    await insert_iteration(session, feature_id, iteration_values(iteration))
                    record = await get_feature(session, feature_id)
                    new_version = record.version
        except IntegrityError as e:
            raise OutOfOrderIterationError(feature_id, expected_iteration_number) from e
        except SQLAlchemyError as e:
            raise StoreIOError(
                f"Failed to append iteration {expected_iteration_number} "
                f"to feature {feature_id}: {e}"
            ) from e

        self._logger.info(
            "iteration_appended",
            feature_id=feature_id,
            iteration=expected_iteration_number,
            decision=iteration.decision.value,
        )
        return new_version

    async def record_iteration(
        self,
        feature: Feature,
        iteration: Iteration,
        expected_version: int,
    ) -> Feature:
        """Append an iteration and write the resulting feature atomically.

        ``feature.review`` must already contain ``iteration`` as its last
        entry. Either both the iteration row and the feature transition are
        committed, or neither is.

        Raises:
            VersionConflictError: If the feature changed since it was loaded.
            OutOfOrderIterationError: If the iteration does not extend the
                stored history by exactly one.
            FeatureNotFoundError: If the feature does not exist.
            StoreIOError: If the database write fails.
        """
        spec = feature.review
        if spec is None or spec.latest != iteration:
            raise OutOfOrderIterationError(feature.id, iteration.iteration_number)

        number = iteration.iteration_number
        values = feature_values(feature)
        values["review_current_iteration"] = number

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    swapped = await compare_and_swap_feature(
                        session,
                        feature.id,
                        expected_version,
                        values,
                        expected_iteration=number - 1,
                    )
                    if not swapped:
                        await self._raise_write_conflict(
                            session, feature.id, expected_version, number
                        )
                    await insert_iteration(session, feature.id, iteration_values(iteration))
                    record = await get_feature(session, feature.id)
                    saved = feature_from_record(record)
        except IntegrityError as e:
            raise OutOfOrderIterationError(feature.id, number) from e
        except SQLAlchemyError as e:
            self._logger.error(
                "iteration_record_failed",
                feature_id=feature.id,
                iteration=number,
                error=str(e),
            )
            raise StoreIOError(
                f"Failed to record iteration {number} for feature {feature.id}: {e}"
            ) from e

        self._logger.info(
            "iteration_recorded",
            feature_id=feature.id,
            iteration=number,
            decision=iteration.decision.value,
            status=saved.status,
            review_status=saved.review.status.value if saved.review else None,
            version=saved.version,
        )
        return saved

    async def _raise_write_conflict(
        self,
        session: AsyncSession,
        feature_id: str,
        expected_version: int,
        iteration_number: int | None = None,
    ) -> None:
        """Work out why a guarded update matched no row and raise accordingly."""
        result = await session.execute(
            select(FeatureRecord.version, FeatureRecord.review_current_iteration).where(
                FeatureRecord.id == feature_id
            )
        )
        row = result.one_or_none()
        if row is None:
            raise FeatureNotFoundError(feature_id)
        version, current_iteration = row
        if version != expected_version:
            self._logger.warning(
                "feature_version_conflict",
                feature_id=feature_id,
                expected_version=expected_version,
                actual_version=version,
            )
            raise VersionConflictError(feature_id, expected_version, version)
        raise OutOfOrderIterationError(feature_id, iteration_number or 0, current_iteration)

    # ------------------------------------------------------------------
    # Detail documents
    # ------------------------------------------------------------------

    def detail_path(self, feature_id: str, iteration_number: int) -> Path:
        """Filesystem path of an iteration's detail document."""
        safe_id = _UNSAFE_PATH_CHARS.sub("_", feature_id)
        return self.detail_dir / safe_id / f"iteration-{iteration_number:03d}.md"

    async def persist_iteration_detail(
        self,
        feature_id: str,
        iteration_number: int,
        document: str,
    ) -> str:
        """Write an iteration's long-form Markdown record.

        The file is written to a temporary sibling and renamed into place, so
        a reader never observes a partially written document.

        Returns:
            Reference to the document, relative to the detail directory.

        Raises:
            StoreIOError: If the document cannot be written.
        """
        path = self.detail_path(feature_id, iteration_number)
        try:
            await asyncio.to_thread(_write_atomically, path, document)
        except OSError as e:
            self._logger.error(
                "iteration_detail_write_failed",
                feature_id=feature_id,
                iteration=iteration_number,
                path=str(path),
                error=str(e),
            )
            raise StoreIOError(
                f"Failed to write detail document for iteration {iteration_number} "
                f"of feature {feature_id}: {e}"
            ) from e

        ref = path.relative_to(self.detail_dir).as_posix()
        self._logger.debug(
            "iteration_detail_persisted",
            feature_id=feature_id,
            iteration=iteration_number,
            detail_ref=ref,
        )
        return ref

    async def load_iteration_detail(self, detail_ref: str) -> str | None:
        """Read a detail document by reference, or None if it is missing."""
        path = self.detail_dir / detail_ref
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreIOError(f"Failed to read detail document {detail_ref}: {e}") from e


def _write_atomically(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
