"""Data Transfer Objects for the pipelines web API.

This module defines DTOs for serializing and deserializing workflow, run,
history and event data in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from litestar_pipelines.core.models import HistoryEntry, Run
    from litestar_pipelines.engine.graph import WorkflowGraph

__all__ = [
    "CancelRunDTO",
    "EventAcceptedDTO",
    "EventDTO",
    "GraphDTO",
    "HistoryEntryDTO",
    "RunDTO",
    "RunDetailDTO",
    "StartRunDTO",
    "WorkflowDTO",
]


@dataclass
class WorkflowDTO:
    """DTO for a registered workflow.

    Attributes:
        name: Workflow name.
        version: Workflow version.
        comment: Human-readable description.
        start_at: Id of the first state.
        states: Summary of every state: type, transitions and whether it ends the run.
        timeout_seconds: Deadline for a whole run, if any.
        versions: Every registered version of this workflow, oldest first.
    """

    name: str
    version: str
    comment: str
    start_at: str
    states: dict[str, Any]
    timeout_seconds: float | None = None
    versions: list[str] = field(default_factory=list)

    @classmethod
    def from_graph(cls, graph: WorkflowGraph, versions: list[str] | None = None) -> WorkflowDTO:
        summary = graph.to_dict()
        return cls(
            name=summary["name"],
            version=summary["version"],
            comment=summary["comment"],
            start_at=summary["start_at"],
            states=summary["states"],
            timeout_seconds=summary["timeout_seconds"],
            versions=versions or [graph.version],
        )


@dataclass
class GraphDTO:
    """DTO for workflow graph visualization.

    Attributes:
        mermaid_source: MermaidJS graph definition.
        nodes: List of node definitions.
        edges: List of edge definitions.
    """

    mermaid_source: str
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]


@dataclass
class StartRunDTO:
    """DTO for starting a run.

    Attributes:
        workflow: Name of the registered workflow.
        input_data: Initial run context.
        version: Optional workflow version, the latest when omitted.
        run_id: Optional run id. Starting twice with the same id returns the first run.
    """

    workflow: str
    input_data: dict[str, Any] | None = None
    version: str | None = None
    run_id: str | None = None


@dataclass
class CancelRunDTO:
    """DTO for cancelling a run."""

    reason: str | None = None


@dataclass
class RunDTO:
    """DTO for run summary.

    Attributes:
        id: Run id.
        workflow_name: Name of the workflow.
        workflow_version: Version of the workflow.
        status: Current status.
        current_state: State being executed or waited on.
        started_at: When the run started.
        completed_at: When the run finished, if it has.
        error: Error type of a failed run.
        cause: Failure detail.
        parent_id: Owning run of a Parallel branch or Map item.
        degraded: Whether part of the run's history could not be recorded.
    """

    id: str
    workflow_name: str
    workflow_version: str
    status: str
    current_state: str
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None
    cause: str | None = None
    parent_id: str | None = None
    degraded: bool = False

    @classmethod
    def from_run(cls, run: Run) -> RunDTO:
        return cls(
            id=run.id,
            workflow_name=run.workflow_name,
            workflow_version=run.workflow_version,
            status=str(run.status),
            current_state=run.current_state,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error=run.error,
            cause=run.cause,
            parent_id=run.parent_id,
            degraded=run.degraded,
        )


@dataclass
class RunDetailDTO(RunDTO):
    """DTO for detailed run information.

    Extends RunDTO with the run context and scheduling data.

    Attributes:
        context: Current run context.
        attempts: Attempt counter per state id.
        resume_at: Wake time while suspended.
        deadline: Time after which the run times out.
    """

    context: dict[str, Any] = field(default_factory=dict)
    attempts: dict[str, int] = field(default_factory=dict)
    resume_at: datetime | None = None
    deadline: datetime | None = None

    @classmethod
    def from_run(cls, run: Run) -> RunDetailDTO:
        return cls(
            id=run.id,
            workflow_name=run.workflow_name,
            workflow_version=run.workflow_version,
            status=str(run.status),
            current_state=run.current_state,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error=run.error,
            cause=run.cause,
            parent_id=run.parent_id,
            degraded=run.degraded,
            context=run.context,
            attempts=dict(run.attempts),
            resume_at=run.resume_at,
            deadline=run.deadline,
        )


@dataclass
class HistoryEntryDTO:
    """DTO for one execution history entry."""

    sequence: int
    event: str
    timestamp: datetime
    state_id: str | None = None
    attempt: int = 0
    input: dict[str, Any] | None = None
    outcome: dict[str, Any] | None = None
    delay_seconds: float | None = None

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> HistoryEntryDTO:
        return cls(
            sequence=entry.sequence,
            event=str(entry.event),
            timestamp=entry.timestamp,
            state_id=entry.state_id,
            attempt=entry.attempt,
            input=entry.input,
            outcome=entry.outcome.to_dict() if entry.outcome else None,
            delay_seconds=entry.delay_seconds,
        )


@dataclass
class EventDTO:
    """DTO for an inbound event.

    Attributes:
        id: Producer-assigned id, used for deduplication.
        source: Name of the producer.
        detail: Event payload.
        time: When the event happened, now when omitted.
    """

    id: str
    source: str
    detail: dict[str, Any] | None = None
    time: datetime | None = None


@dataclass
class EventAcceptedDTO:
    """DTO returned once an event was matched and queued.

    Attributes:
        event_id: Id of the submitted event.
        run_ids: Run ids allocated for every matching rule.
    """

    event_id: str
    run_ids: list[str]
