"""Initial schema for reviewgate.

Creates the features table, which embeds each feature's review spec and
in-flight review slot, and the append-only review_iterations table.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "features",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.Text(), nullable=False, server_default="backlog"),
        sa.Column("workdir", sa.Text(), nullable=True),
        sa.Column("skip_tests", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("implementation_output", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("review_status", sa.Text(), nullable=True),
        sa.Column(
            "review_current_iteration",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("review_max_iterations", sa.Integer(), nullable=True),
        sa.Column("pending_iteration_number", sa.Integer(), nullable=True),
        sa.Column("pending_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_commit_sha", sa.Text(), nullable=True),
        sa.Column("pending_diff", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_features_status", "features", ["status"])

    op.create_table(
        "review_iterations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "feature_id",
            sa.Text(),
            sa.ForeignKey("features.id"),
            nullable=False,
        ),
        sa.Column("iteration_number", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewer", sa.Text(), nullable=False),
        sa.Column("decision", sa.Text(), nullable=False),
        sa.Column("commit_sha", sa.Text(), nullable=False),
        sa.Column("diff", sa.Text(), nullable=False),
        sa.Column("findings", sa.JSON(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("detail_ref", sa.Text(), nullable=True),
        sa.UniqueConstraint("feature_id", "iteration_number", name="uq_feature_iteration"),
    )
    op.create_index(
        "ix_review_iterations_feature_id",
        "review_iterations",
        ["feature_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_review_iterations_feature_id", table_name="review_iterations")
    op.drop_table("review_iterations")
    op.drop_index("ix_features_status", table_name="features")
    op.drop_table("features")
