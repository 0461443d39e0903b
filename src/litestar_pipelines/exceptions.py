"""Exception hierarchy for litestar-pipelines."""

from __future__ import annotations

from typing import Any

__all__ = (
    "CancellationError",
    "CyclicWithoutGuardError",
    "ExecutionTimeoutError",
    "InvalidStateError",
    "MalformedBranchError",
    "MissingDefaultError",
    "PersistenceError",
    "PipelinesError",
    "RunAlreadyTerminalError",
    "RunNotFoundError",
    "StepExecutionError",
    "TriggerConfigurationError",
    "UnknownStateReferenceError",
    "UnreachableStateError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
)


class PipelinesError(Exception):
    """Base exception for all litestar-pipelines errors.

    All exceptions raised by litestar-pipelines inherit from this class, so callers
    can catch every pipeline-related error with a single except clause.
    """


class WorkflowValidationError(PipelinesError):
    """Raised when a workflow definition fails validation.

    Validation collects every problem it finds before raising, so ``errors``
    may hold messages of several kinds. The concrete subclass raised reflects
    the first problem found.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}")


class UnknownStateReferenceError(WorkflowValidationError):
    """A transition, default, catcher or the start state names a state that does not exist."""


class MissingDefaultError(WorkflowValidationError):
    """A Choice state has no default transition."""


class MalformedBranchError(WorkflowValidationError):
    """A Parallel branch or Map iterator sub-graph is itself invalid."""


class CyclicWithoutGuardError(WorkflowValidationError):
    """A cycle in the graph does not pass through a guarded Choice and a Wait state."""


class InvalidStateError(WorkflowValidationError):
    """A state document has an invalid shape (unknown type, next and end together, ...)."""


class UnreachableStateError(WorkflowValidationError):
    """A state cannot be reached from the start state."""


class StepExecutionError(PipelinesError):
    """Raised when a step fails to execute.

    Inside the engine this is always handled by catchers and retry policies; it
    only describes the failure recorded in history once those are exhausted.

    Attributes:
        state_id: The id of the state that failed.
        error: The error type name reported by the job runner.
        cause: Human readable failure detail, if any.
        attempt: The attempt number that failed.
    """

    def __init__(
        self,
        state_id: str,
        error: str,
        cause: str | None = None,
        attempt: int = 1,
    ) -> None:
        """Initialize the exception with step execution details.

        Args:
            state_id: The id of the state that failed.
            error: The error type name.
            cause: Human readable failure detail.
            attempt: The attempt number that failed.
        """
        self.state_id = state_id
        self.error = error
        self.cause = cause
        self.attempt = attempt
        msg = f"State '{state_id}' failed on attempt {attempt} with {error}"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)

    def to_payload(self) -> dict[str, Any]:
        """Return the failure payload injected into a run's context by catchers."""
        return {"error": self.error, "cause": self.cause, "state": self.state_id, "attempt": self.attempt}


class PersistenceError(PipelinesError):
    """Raised when the history or run store is unavailable.

    The engine treats this as a degraded-mode warning: the run continues.
    """


class ExecutionTimeoutError(PipelinesError, TimeoutError):
    """Raised when a step or a whole run exceeds its deadline.

    Attributes:
        run_id: The run that timed out.
        state_id: The state being executed, if the timeout was step scoped.
    """

    def __init__(self, run_id: str, state_id: str | None = None) -> None:
        """Initialize the exception with timeout details.

        Args:
            run_id: The run that timed out.
            state_id: The state being executed, if any.
        """
        self.run_id = run_id
        self.state_id = state_id
        scope = f"state '{state_id}'" if state_id else "run"
        super().__init__(f"Run '{run_id}' timed out in {scope}")


class CancellationError(PipelinesError):
    """Raised to signal that a run was cancelled by an external request.

    Cancellation is terminal but it is not a failure.
    """

    def __init__(self, run_id: str, reason: str | None = None) -> None:
        """Initialize the exception with cancellation details.

        Args:
            run_id: The cancelled run.
            reason: Optional reason supplied by the caller.
        """
        self.run_id = run_id
        self.reason = reason
        msg = f"Run '{run_id}' was cancelled"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class WorkflowNotFoundError(PipelinesError):
    """Raised when a workflow graph is not registered.

    Attributes:
        name: The name of the workflow that was not found.
        version: The specific version requested, if any.
    """

    def __init__(self, name: str, version: str | None = None) -> None:
        """Initialize the exception with workflow details.

        Args:
            name: The name of the workflow that was not found.
            version: The specific version requested, if any.
        """
        self.name = name
        self.version = version
        msg = f"Workflow '{name}'"
        if version:
            msg += f" version '{version}'"
        msg += " not found"
        super().__init__(msg)


class RunNotFoundError(PipelinesError):
    """Raised when a run id is unknown to the engine and its run store."""

    def __init__(self, run_id: str) -> None:
        """Initialize the exception with run details.

        Args:
            run_id: The id of the run that was not found.
        """
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' not found")


class RunAlreadyTerminalError(PipelinesError):
    """Raised when trying to move a run that already reached a terminal status.

    Attributes:
        run_id: The id of the run.
        status: The terminal status of the run.
    """

    def __init__(self, run_id: str, status: str) -> None:
        """Initialize the exception with run state details.

        Args:
            run_id: The id of the run.
            status: The current terminal status.
        """
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run '{run_id}' is already {status}")


class TriggerConfigurationError(PipelinesError):
    """Raised when a trigger rule or schedule expression is malformed."""
