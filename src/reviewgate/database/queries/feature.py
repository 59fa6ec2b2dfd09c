"""Feature and iteration query functions for reviewgate.

Session-level building blocks used by the review store and the intake
surfaces. ``create_feature`` manages its own transaction; the write helpers
``compare_and_swap_feature`` and ``insert_iteration`` run inside a
transaction owned by the caller so several of them can commit atomically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reviewgate.database.models.feature import FeatureRecord
from reviewgate.database.models.iteration import IterationRecord

logger = structlog.get_logger(__name__)


async def create_feature(
    session: AsyncSession,
    title: str,
    description: str = "",
    feature_id: str | None = None,
    workdir: str | None = None,
    skip_tests: bool = False,
    status: str = "backlog",
) -> FeatureRecord:
    """Create a new feature at backlog intake.

    Args:
        session: Active async database session.
        title: Short feature title.
        description: Feature spec text.
        feature_id: Explicit identifier; a UUID is generated when omitted.
        workdir: Repository path used for review commits.
        skip_tests: Pipeline policy flag.
        status: Initial status.

    Returns:
        The newly created FeatureRecord.
    """
    record = FeatureRecord(
        title=title,
        description=description,
        workdir=workdir,
        skip_tests=skip_tests,
        status=status,
        version=0,
        review_current_iteration=0,
    )
    if feature_id is not None:
        record.id = feature_id

    async with session.begin():
        session.add(record)
        await session.flush()
        await session.refresh(record, attribute_names=["iterations"])

    logger.info(
        "feature_created",
        feature_id=record.id,
        title=title,
        status=status,
    )

    return record


async def get_feature(
    session: AsyncSession,
    feature_id: str,
) -> FeatureRecord | None:
    """Retrieve a feature and its iterations by ID.

    The row is re-read even if the session already holds it, so callers
    always see the latest committed version token.

    Args:
        session: Active async database session.
        feature_id: Identifier of the feature to retrieve.

    Returns:
        The FeatureRecord if found, None otherwise.
    """
    stmt = (
        select(FeatureRecord)
        .where(FeatureRecord.id == feature_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_features(
    session: AsyncSession,
    status_filter: str | None = None,
) -> list[FeatureRecord]:
    """List features, newest first, with an optional status filter.

    Args:
        session: Active async database session.
        status_filter: Optional status value to filter by.

    Returns:
        List of matching FeatureRecord instances.
    """
    stmt = select(FeatureRecord)
    if status_filter is not None:
        stmt = stmt.where(FeatureRecord.status == status_filter)
    stmt = stmt.order_by(FeatureRecord.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def compare_and_swap_feature(
    session: AsyncSession,
    feature_id: str,
    expected_version: int,
    values: dict[str, Any],
    expected_iteration: int | None = None,
) -> bool:
    """Update a feature only if its version still equals expected_version.

    The version is incremented by exactly one on success. Must be called
    inside a transaction owned by the caller.

    Args:
        session: Active async database session with an open transaction.
        feature_id: Identifier of the feature to update.
        expected_version: Version token the caller loaded.
        values: Column values to write.
        expected_iteration: When given, the stored iteration counter must
            also equal this value.

    Returns:
        True if the row was updated, False if a guard did not match or
        the feature does not exist.
    """
    stmt = (
        update(FeatureRecord)
        .where(FeatureRecord.id == feature_id)
        .where(FeatureRecord.version == expected_version)
    )
    if expected_iteration is not None:
        stmt = stmt.where(FeatureRecord.review_current_iteration == expected_iteration)
    stmt = (
        stmt.values(
            **values,
            version=expected_version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    swapped = result.rowcount == 1

    logger.debug(
        "feature_compare_and_swap",
        feature_id=feature_id,
        expected_version=expected_version,
        swapped=swapped,
    )

    return swapped


async def advance_iteration_counter(
    session: AsyncSession,
    feature_id: str,
    iteration_number: int,
) -> bool:
    """Move the iteration counter from iteration_number - 1 to iteration_number.

    The update only applies when the counter currently equals
    ``iteration_number - 1`` and the new value stays within the feature's
    cap. The pending review slot is cleared and the version incremented.
    Must be called inside a transaction owned by the caller.

    Args:
        session: Active async database session with an open transaction.
        feature_id: Identifier of the feature to update.
        iteration_number: The iteration being appended.

    Returns:
        True if the counter advanced, False otherwise.
    """
    stmt = (
        update(FeatureRecord)
        .where(FeatureRecord.id == feature_id)
        .where(FeatureRecord.review_current_iteration == iteration_number - 1)
        .where(FeatureRecord.review_max_iterations >= iteration_number)
        .values(
            review_current_iteration=iteration_number,
            pending_iteration_number=None,
            pending_started_at=None,
            pending_commit_sha=None,
            pending_diff=None,
            version=FeatureRecord.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def insert_iteration(
    session: AsyncSession,
    feature_id: str,
    values: dict[str, Any],
) -> IterationRecord:
    """Insert one iteration row.

    Must be called inside a transaction owned by the caller. A duplicate
    (feature_id, iteration_number) raises IntegrityError at flush.

    Args:
        session: Active async database session with an open transaction.
        feature_id: Owning feature identifier.
        values: Column values for the new row.

    Returns:
        The inserted IterationRecord.
    """
    record = IterationRecord(feature_id=feature_id, **values)
    session.add(record)
    await session.flush()
    return record
