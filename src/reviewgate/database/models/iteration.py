"""Review iteration model for reviewgate.

One row per completed review pass. Rows are inserted once and never updated;
the unique constraint on (feature_id, iteration_number) rejects duplicate
appends racing for the same slot.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reviewgate.database.models.base import Base


class IterationRecord(Base):
    """A recorded review iteration.

    Attributes:
        id: Surrogate primary key.
        feature_id: Owning feature.
        iteration_number: 1-based iteration number.
        completed_at: When the review finished.
        reviewer: Reviewing model/provider identity.
        decision: approved, rejected or failed.
        commit_sha: Reviewed commit.
        diff: Reviewed diff text.
        findings: Finding list serialized as JSON.
        summary: Short review summary.
        rejection_reason: Rationale for non-approved decisions.
        detail_ref: Reference to the persisted detail document.
        feature: Relationship to the owning FeatureRecord.
    """

    __tablename__ = "review_iterations"
    __table_args__ = (
        UniqueConstraint("feature_id", "iteration_number", name="uq_feature_iteration"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature_id: Mapped[str] = mapped_column(
        ForeignKey("features.id"),
        nullable=False,
        index=True,
    )
    iteration_number: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reviewer: Mapped[str] = mapped_column(Text, nullable=False)
    decision: Mapped[str] = mapped_column(Text, nullable=False)
    commit_sha: Mapped[str] = mapped_column(Text, nullable=False)
    diff: Mapped[str] = mapped_column(Text, nullable=False)
    findings: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    detail_ref: Mapped[str | None] = mapped_column(Text, nullable=True)

    feature: Mapped["FeatureRecord"] = relationship(  # noqa: F821
        "FeatureRecord",
        back_populates="iterations",
    )
