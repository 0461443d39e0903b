"""Core type definitions for litestar-pipelines.

This module defines the fundamental enums and type aliases used throughout
the orchestration engine.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


from typing import TypeAlias

__all__ = [
    "Context",
    "HistoryEventType",
    "RunStatus",
    "StateType",
]


class StateType(StrEnum):
    """Closed set of state kinds a workflow graph may contain.

    Attributes:
        TASK: Invokes an external job through the job runner.
        CHOICE: Branches on the run context.
        WAIT: Suspends the run until a point in time.
        PARALLEL: Runs several sub-graphs against copies of the context.
        MAP: Runs one sub-graph per item of a context sequence.
        PASS: Injects a fixed result and moves on.
        FAIL: Ends the run as failed.
        SUCCEED: Ends the run as succeeded.
    """

    TASK = "Task"
    CHOICE = "Choice"
    WAIT = "Wait"
    PARALLEL = "Parallel"
    MAP = "Map"
    PASS = "Pass"
    FAIL = "Fail"
    SUCCEED = "Succeed"


class RunStatus(StrEnum):
    """Overall status of a run.

    ``RUNNING`` is the only non-terminal status; a run never re-enters it once
    it has left.

    Attributes:
        RUNNING: The run is executing or suspended on a wait.
        SUCCEEDED: The run reached a Succeed state or an end transition.
        FAILED: A step failed with no catcher or retry left, or a Fail state ran.
        TIMED_OUT: A step or the whole run exceeded its deadline.
        CANCELLED: The run was cancelled by an external request.
    """

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Whether this status ends the run."""
        return self is not RunStatus.RUNNING


class HistoryEventType(StrEnum):
    """Kind of record appended to a run's execution history."""

    RUN_STARTED = "RunStarted"
    STATE_ENTERED = "StateEntered"
    STEP_SUCCEEDED = "StepSucceeded"
    STEP_FAILED = "StepFailed"
    ERROR_CAUGHT = "ErrorCaught"
    RETRY_SCHEDULED = "RetryScheduled"
    WAIT_SCHEDULED = "WaitScheduled"
    WAIT_RESUMED = "WaitResumed"
    BRANCHES_STARTED = "BranchesStarted"
    BRANCHES_COMPLETED = "BranchesCompleted"
    RUN_SUCCEEDED = "RunSucceeded"
    RUN_FAILED = "RunFailed"
    RUN_TIMED_OUT = "RunTimedOut"
    RUN_CANCELLED = "RunCancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether this event closes the run's history."""
        return self in _TERMINAL_EVENTS


_TERMINAL_EVENTS = frozenset(
    {
        HistoryEventType.RUN_SUCCEEDED,
        HistoryEventType.RUN_FAILED,
        HistoryEventType.RUN_TIMED_OUT,
        HistoryEventType.RUN_CANCELLED,
    }
)


# Type aliases for run data
Context: TypeAlias = dict[str, Any]
"""Type alias for the mutable key-value document threaded through a run."""
