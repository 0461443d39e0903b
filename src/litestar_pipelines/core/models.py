"""Runtime data models for litestar-pipelines.

This module provides the dataclasses describing a run and its history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from litestar_pipelines.core.types import HistoryEventType, RunStatus, StateType

if TYPE_CHECKING:
    from litestar_pipelines.engine.graph import WorkflowGraph


__all__ = ["FanOut", "HistoryEntry", "Outcome", "Run"]


@dataclass(frozen=True)
class Outcome:
    """Result of a step or of a whole run.

    Attributes:
        success: Whether the step or run succeeded.
        payload: Output on success, failure details otherwise.
        error: Error type name on failure.
        cause: Human readable failure detail.
    """

    success: bool
    payload: Any = None
    error: str | None = None
    cause: str | None = None

    @classmethod
    def ok(cls, payload: Any = None) -> Outcome:
        return cls(success=True, payload=payload)

    @classmethod
    def failure(cls, error: str, cause: str | None = None, payload: Any = None) -> Outcome:
        return cls(success=False, payload=payload, error=error, cause=cause)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "payload": self.payload, "error": self.error, "cause": self.cause}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Outcome:
        return cls(
            success=bool(data.get("success")),
            payload=data.get("payload"),
            error=data.get("error"),
            cause=data.get("cause"),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one thing that happened to a run.

    Entries of a run are totally ordered by ``(timestamp, sequence)``.

    Attributes:
        run_id: The run this entry belongs to.
        sequence: Per-run monotonically increasing number.
        state_id: The state involved, if any.
        event: What happened.
        timestamp: When it happened.
        attempt: Attempt number of the state (1 for the first invocation).
        input: Snapshot of the context the state was entered with.
        outcome: Success payload or failure details.
        delay_seconds: Backoff or wait delay, for scheduling events.
    """

    run_id: str
    sequence: int
    state_id: str | None
    event: HistoryEventType
    timestamp: datetime
    attempt: int = 0
    input: dict[str, Any] | None = None
    outcome: Outcome | None = None
    delay_seconds: float | None = None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.timestamp, self.sequence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "sequence": self.sequence,
            "state_id": self.state_id,
            "event": str(self.event),
            "timestamp": self.timestamp.isoformat(),
            "attempt": self.attempt,
            "input": self.input,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "delay_seconds": self.delay_seconds,
        }


@dataclass
class FanOut:
    """Bookkeeping for a Parallel or Map state waiting on its child runs.

    Attributes:
        state_id: The Parallel or Map state.
        kind: ``PARALLEL`` or ``MAP``.
        inputs: Context given to each child, in declaration/item order.
        child_ids: Run id of each child once started.
        outcomes: Terminal outcome of each finished child.
        max_concurrency: Upper bound on running children.
        tolerated_failures: Child failures allowed before the state fails.
        fail_fast: Fail as soon as more than ``tolerated_failures`` children failed
            instead of joining on every child.
        next_index: Index of the next child to start.
    """

    state_id: str
    kind: StateType
    inputs: list[dict[str, Any]]
    child_ids: dict[int, str] = field(default_factory=dict)
    outcomes: dict[int, Outcome] = field(default_factory=dict)
    max_concurrency: int | None = None
    tolerated_failures: int = 0
    fail_fast: bool = False
    next_index: int = 0

    @property
    def running(self) -> list[int]:
        return [index for index in self.child_ids if index not in self.outcomes]

    @property
    def complete(self) -> bool:
        return len(self.outcomes) == len(self.inputs)

    def failed_indexes(self) -> list[int]:
        return sorted(index for index, outcome in self.outcomes.items() if not outcome.success)


@dataclass
class Run:
    """One execution of a workflow graph.

    The engine owns a run exclusively while it is ``RUNNING``; the pair
    ``current_state`` + ``context`` is the whole continuation needed to resume it.

    Attributes:
        id: Unique run id.
        graph: The shared, immutable graph this run executes.
        current_state: Id of the state being executed or waited on.
        context: Mutable document threaded between states.
        status: Current status.
        attempts: Attempt counter per state id.
        state_input: Context snapshot taken when entering ``current_state``; retries reuse it.
        started_at: Creation time.
        completed_at: Time the run reached a terminal status.
        deadline: Time after which the run is timed out.
        resume_at: Wake time while suspended on a Wait or a retry backoff.
        error: Error type of a failed run.
        cause: Failure detail of a failed or cancelled run.
        parent_id: Owning run for Parallel branches and Map items.
        branch_index: Position of this child within its parent's fan-out.
        fanout: Child bookkeeping while suspended on a Parallel or Map state.
        in_flight: Set while a Task invocation or a fan-out of ``current_state`` has not
            produced a result; the attempt it counts is re-run on resume.
        resumed: Set when the scheduler wakes a run suspended on a Wait state.
        cancel_requested: Set by ``cancel`` while a step is in flight.
        cancel_reason: Reason given to ``cancel``.
        degraded: Set when a history append failed.
    """

    id: str
    graph: WorkflowGraph = field(repr=False, compare=False)
    current_state: str
    context: dict[str, Any]
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    attempts: dict[str, int] = field(default_factory=dict)
    state_input: dict[str, Any] | None = None
    completed_at: datetime | None = None
    deadline: datetime | None = None
    resume_at: datetime | None = None
    error: str | None = None
    cause: str | None = None
    parent_id: str | None = None
    branch_index: int | None = None
    fanout: FanOut | None = field(default=None, repr=False)
    in_flight: bool = False
    resumed: bool = False
    cancel_requested: bool = False
    cancel_reason: str | None = None
    degraded: bool = False
    sequence: int = field(default=0, repr=False)

    @property
    def workflow_name(self) -> str:
        return self.graph.name

    @property
    def workflow_version(self) -> str:
        return self.graph.version

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def next_sequence(self) -> int:
        """Allocate the next history sequence number for this run."""
        self.sequence += 1
        return self.sequence

    def to_dict(self) -> dict[str, Any]:
        """Serializable view of the run, used by run stores and the HTTP surface."""
        return {
            "id": self.id,
            "workflow_name": self.workflow_name,
            "workflow_version": self.workflow_version,
            "status": str(self.status),
            "current_state": self.current_state,
            "context": self.context,
            "attempts": dict(self.attempts),
            "state_input": self.state_input,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "resume_at": self.resume_at.isoformat() if self.resume_at else None,
            "error": self.error,
            "cause": self.cause,
            "parent_id": self.parent_id,
            "branch_index": self.branch_index,
            "in_flight": self.in_flight,
            "degraded": self.degraded,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], graph: WorkflowGraph) -> Run:
        """Rebuild a run from :meth:`to_dict` output and its graph."""

        def _when(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=data["id"],
            graph=graph,
            current_state=data["current_state"],
            context=data.get("context") or {},
            started_at=datetime.fromisoformat(data["started_at"]),
            status=RunStatus(data.get("status", RunStatus.RUNNING)),
            attempts=dict(data.get("attempts") or {}),
            state_input=data.get("state_input"),
            completed_at=_when(data.get("completed_at")),
            deadline=_when(data.get("deadline")),
            resume_at=_when(data.get("resume_at")),
            error=data.get("error"),
            cause=data.get("cause"),
            parent_id=data.get("parent_id"),
            branch_index=data.get("branch_index"),
            in_flight=bool(data.get("in_flight", False)),
            degraded=bool(data.get("degraded", False)),
            sequence=int(data.get("sequence", 0)),
        )
