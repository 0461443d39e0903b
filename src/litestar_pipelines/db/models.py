"""SQLAlchemy models for pipeline persistence.

This module defines the database models backing the durable stores:
- WorkflowDefinitionModel: Stores registered workflow documents by name and version
- PipelineRunModel: Stores the latest serialized state of every run
- HistoryEntryModel: Append-only execution history, one row per event
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import JSON, DateTime, Enum, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from litestar_pipelines.core.types import HistoryEventType, RunStatus

__all__ = [
    "HistoryEntryModel",
    "JSONType",
    "PipelineRunModel",
    "WorkflowDefinitionModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowDefinitionModel(UUIDAuditBase):
    """Persisted workflow document, keyed by name and version.

    Attributes:
        name: Workflow name.
        version: Version string (e.g., "1.0.0").
        comment: Human-readable description taken from the document.
        definition_json: The workflow document as registered.
        is_active: Whether this version is loaded into the registry on startup.
    """

    __tablename__ = "pipeline_definitions"
    __table_args__ = (
        Index("ix_pipeline_definitions_name_version", "name", "version", unique=True),
        Index("ix_pipeline_definitions_name_active", "name", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(255), index=True)
    version: Mapped[str] = mapped_column(String(50))
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    definition_json: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    is_active: Mapped[bool] = mapped_column(default=True)


class PipelineRunModel(UUIDAuditBase):
    """Latest state of one run.

    Run ids are strings chosen by the engine (child runs embed their parent's id),
    so they live in their own unique column next to the surrogate primary key.

    Attributes:
        run_id: Engine run id.
        parent_run_id: Owning run of a Parallel branch or Map item.
        branch_index: Position of a child run within its parent's fan-out.
        workflow_name: Denormalized workflow name for quick queries.
        workflow_version: Denormalized workflow version.
        status: Current run status.
        current_state: Id of the state being executed or waited on.
        context_data: The run context.
        state_input: Context snapshot taken when ``current_state`` was entered.
        attempts: Attempt counter per state id.
        error: Error type of a failed run.
        cause: Failure detail of a failed or cancelled run.
        started_at: When the run was created.
        completed_at: When the run reached a terminal status.
        deadline: When the run times out.
        resume_at: Wake time of a suspended run.
        in_flight: Whether an attempt of ``current_state`` is running or was interrupted.
        degraded: Whether a history append failed for this run.
        sequence: Last allocated history sequence number.
    """

    __tablename__ = "pipeline_runs"
    __table_args__ = (
        Index("ix_pipeline_runs_workflow_status", "workflow_name", "status"),
        Index("ix_pipeline_runs_status_resume", "status", "resume_at"),
    )

    run_id: Mapped[str] = mapped_column(String(512), unique=True, index=True)
    parent_run_id: Mapped[str | None] = mapped_column(String(512), nullable=True, index=True)
    branch_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    workflow_name: Mapped[str] = mapped_column(String(255), index=True)
    workflow_version: Mapped[str] = mapped_column(String(50))
    status: Mapped[RunStatus] = mapped_column(
        Enum(RunStatus, native_enum=False, length=50),
        default=RunStatus.RUNNING,
        index=True,
    )
    current_state: Mapped[str] = mapped_column(String(255))
    context_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    state_input: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    attempts: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resume_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    in_flight: Mapped[bool] = mapped_column(default=False)
    degraded: Mapped[bool] = mapped_column(default=False)
    sequence: Mapped[int] = mapped_column(Integer, default=0)


class HistoryEntryModel(UUIDAuditBase):
    """One execution history record.

    Attributes:
        run_id: The run this entry belongs to.
        sequence: Per-run monotonically increasing number.
        state_id: The state involved, if any.
        event: What happened.
        timestamp: When it happened.
        attempt: Attempt number of the state.
        input_data: Context snapshot the state was entered with.
        outcome: Serialized :class:`~litestar_pipelines.core.models.Outcome`.
        delay_seconds: Backoff or wait delay.
    """

    __tablename__ = "pipeline_history"
    __table_args__ = (Index("ix_pipeline_history_run_sequence", "run_id", "sequence", unique=True),)

    run_id: Mapped[str] = mapped_column(String(512), index=True)
    sequence: Mapped[int] = mapped_column(Integer)
    state_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event: Mapped[HistoryEventType] = mapped_column(Enum(HistoryEventType, native_enum=False, length=50))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    input_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    outcome: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    delay_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
