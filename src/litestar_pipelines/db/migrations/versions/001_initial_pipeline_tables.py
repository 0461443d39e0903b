"""Initial pipeline tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create pipeline tables."""
    op.create_table(
        "pipeline_definitions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=50), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("definition_json", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_definitions_name", "pipeline_definitions", ["name"])
    op.create_index(
        "ix_pipeline_definitions_name_version",
        "pipeline_definitions",
        ["name", "version"],
        unique=True,
    )
    op.create_index("ix_pipeline_definitions_name_active", "pipeline_definitions", ["name", "is_active"])

    op.create_table(
        "pipeline_runs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=512), nullable=False),
        sa.Column("parent_run_id", sa.String(length=512), nullable=True),
        sa.Column("branch_index", sa.Integer(), nullable=True),
        sa.Column("workflow_name", sa.String(length=255), nullable=False),
        sa.Column("workflow_version", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("current_state", sa.String(length=255), nullable=False),
        sa.Column("context_data", sa.JSON(), nullable=False),
        sa.Column("state_input", sa.JSON(), nullable=True),
        sa.Column("attempts", sa.JSON(), nullable=False),
        sa.Column("error", sa.String(length=255), nullable=True),
        sa.Column("cause", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resume_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_flight", sa.Boolean(), nullable=False, default=False),
        sa.Column("degraded", sa.Boolean(), nullable=False, default=False),
        sa.Column("sequence", sa.Integer(), nullable=False, default=0),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_runs_run_id", "pipeline_runs", ["run_id"], unique=True)
    op.create_index("ix_pipeline_runs_parent_run_id", "pipeline_runs", ["parent_run_id"])
    op.create_index("ix_pipeline_runs_workflow_name", "pipeline_runs", ["workflow_name"])
    op.create_index("ix_pipeline_runs_status", "pipeline_runs", ["status"])
    op.create_index("ix_pipeline_runs_workflow_status", "pipeline_runs", ["workflow_name", "status"])
    op.create_index("ix_pipeline_runs_status_resume", "pipeline_runs", ["status", "resume_at"])

    op.create_table(
        "pipeline_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=512), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("state_id", sa.String(length=255), nullable=True),
        sa.Column("event", sa.String(length=50), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, default=0),
        sa.Column("input_data", sa.JSON(), nullable=True),
        sa.Column("outcome", sa.JSON(), nullable=True),
        sa.Column("delay_seconds", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_history_run_id", "pipeline_history", ["run_id"])
    op.create_index(
        "ix_pipeline_history_run_sequence",
        "pipeline_history",
        ["run_id", "sequence"],
        unique=True,
    )


def downgrade() -> None:
    """Drop pipeline tables."""
    op.drop_table("pipeline_history")
    op.drop_table("pipeline_runs")
    op.drop_table("pipeline_definitions")
