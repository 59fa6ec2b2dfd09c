"""Feature model for reviewgate.

Defines the features table. A row holds the feature itself plus its embedded
review spec columns (status, iteration counter, cap and the pending review
slot). The iteration history lives in ``review_iterations``.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reviewgate.database.models.base import Base, TimestampMixin


class FeatureRecord(TimestampMixin, Base):
    """A unit of work tracked through the review pipeline.

    Attributes:
        id: Stable feature identifier.
        title: Short feature title.
        description: Feature spec text.
        status: Pipeline status value.
        workdir: Repository path used for commits.
        skip_tests: Pipeline policy flag.
        implementation_output: Output of the latest implementation attempt.
        version: Compare-and-swap token, incremented on every write.
        review_status: Review spec status; NULL until the first review.
        review_current_iteration: Number of recorded iterations.
        review_max_iterations: Iteration cap for this feature.
        pending_iteration_number: Reserved slot of an in-flight review.
        pending_started_at: When the slot was claimed.
        pending_commit_sha: Commit under review once known.
        pending_diff: Diff under review once known.
        iterations: Relationship to the recorded iterations.
    """

    __tablename__ = "features"
    __table_args__ = (Index("ix_features_status", "status"),)

    id: Mapped[str] = mapped_column(
        Text,
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="backlog")
    workdir: Mapped[str | None] = mapped_column(Text, nullable=True)
    skip_tests: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    implementation_output: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    review_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_current_iteration: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    review_max_iterations: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pending_iteration_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pending_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    pending_commit_sha: Mapped[str | None] = mapped_column(Text, nullable=True)
    pending_diff: Mapped[str | None] = mapped_column(Text, nullable=True)

    iterations: Mapped[list["IterationRecord"]] = relationship(  # noqa: F821
        "IterationRecord",
        back_populates="feature",
        order_by="IterationRecord.iteration_number",
        lazy="selectin",
    )
