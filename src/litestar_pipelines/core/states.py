"""State definitions for workflow graphs.

Each state kind is its own frozen dataclass. ``StateDefinition`` is the closed
union of those kinds; the execution engine dispatches on it exhaustively.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Any, ClassVar, TypeAlias, Union

from litestar_pipelines.core.context import MISSING, get_path
from litestar_pipelines.core.types import StateType

if TYPE_CHECKING:
    from litestar_pipelines.core.definition import WorkflowDefinition

__all__ = [
    "ALL_ERRORS",
    "Catcher",
    "ChoiceRule",
    "ChoiceState",
    "FailState",
    "MapState",
    "ParallelState",
    "PassState",
    "RecoverableState",
    "RetryPolicy",
    "State",
    "StateDefinition",
    "SucceedState",
    "TaskState",
    "TransitionState",
    "WaitState",
    "error_matches",
]

ALL_ERRORS = "*"
"""Error pattern that matches every error type."""


def error_matches(patterns: tuple[str, ...], error: str) -> bool:
    """Check an error type name against glob patterns such as ``"Glue.*"``."""
    return any(pattern == ALL_ERRORS or fnmatchcase(error, pattern) for pattern in patterns)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for a failing state.

    ``max_attempts`` counts retries after the first attempt, so a policy with
    ``max_attempts=3`` allows four invocations in total.

    Attributes:
        error_equals: Glob patterns of error types this policy retries.
        max_attempts: Number of retries allowed.
        interval_seconds: Delay before the first retry.
        backoff_rate: Multiplier applied to the delay for each further retry.
        max_delay_seconds: Upper bound on any single delay.
    """

    error_equals: tuple[str, ...] = (ALL_ERRORS,)
    max_attempts: int = 3
    interval_seconds: float = 1.0
    backoff_rate: float = 2.0
    max_delay_seconds: float = 60.0

    def matches(self, error: str) -> bool:
        """Whether this policy applies to ``error``."""
        return error_matches(self.error_equals, error)

    def delay_for(self, retry_number: int) -> float:
        """Delay in seconds before retry number ``retry_number`` (1-based).

        Example:
            >>> RetryPolicy(interval_seconds=1, backoff_rate=2).delay_for(3)
            4.0
        """
        delay = self.interval_seconds * self.backoff_rate ** (retry_number - 1)
        return float(min(self.max_delay_seconds, delay))


@dataclass(frozen=True)
class Catcher:
    """Redirects a failure to another state.

    Attributes:
        error_equals: Glob patterns of error types this catcher handles.
        next: State to transition to.
        result_path: Context key that receives the failure payload.
    """

    next: str
    error_equals: tuple[str, ...] = (ALL_ERRORS,)
    result_path: str = "error"

    def matches(self, error: str) -> bool:
        """Whether this catcher handles ``error``."""
        return error_matches(self.error_equals, error)


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def _apply(actual: Any, expected: Any) -> bool:
        if actual is MISSING:
            return False
        try:
            return bool(op(actual, expected))
        except TypeError:
            return False

    return _apply


def _string_prefix(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and actual.startswith(str(expected))


def _string_matches(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and fnmatchcase(actual, str(expected))


def _is_present(actual: Any, expected: Any) -> bool:
    return (actual is not MISSING) is bool(expected)


COMPARISON_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _compare(operator.eq),
    "not_equals": _compare(operator.ne),
    "greater_than": _compare(operator.gt),
    "greater_than_equals": _compare(operator.ge),
    "less_than": _compare(operator.lt),
    "less_than_equals": _compare(operator.le),
    "string_prefix": _string_prefix,
    "string_matches": _string_matches,
    "is_present": _is_present,
}
"""Comparison operator names accepted in Choice rules."""

LOGICAL_OPERATORS = ("and", "or", "not")


@dataclass(frozen=True)
class ChoiceRule:
    """A condition evaluated against the run context.

    A rule is either a comparison (``variable`` + ``operator`` + ``value``) or a
    logical combination of nested rules. Only top-level rules carry ``next``.

    Example:
        >>> rule = ChoiceRule(variable="status", operator="equals", value="READY", next="Done")
        >>> rule.evaluate({"status": "READY"})
        True
    """

    operator: str
    variable: str | None = None
    value: Any = None
    rules: tuple[ChoiceRule, ...] = ()
    next: str | None = None

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        """Evaluate the rule against ``context``."""
        if self.operator == "and":
            return all(rule.evaluate(context) for rule in self.rules)
        if self.operator == "or":
            return any(rule.evaluate(context) for rule in self.rules)
        if self.operator == "not":
            return not self.rules[0].evaluate(context)
        actual = get_path(context, self.variable or "")
        return COMPARISON_OPERATORS[self.operator](actual, self.value)

    def describe(self) -> str:
        """Short human readable form, used for graph labels."""
        if self.operator in LOGICAL_OPERATORS:
            inner = f" {self.operator} ".join(rule.describe() for rule in self.rules)
            return f"not ({inner})" if self.operator == "not" else f"({inner})"
        return f"{self.variable} {self.operator} {self.value}"


@dataclass(frozen=True, kw_only=True)
class State:
    """Fields shared by every state kind.

    Attributes:
        id: Unique id of the state within its graph.
        comment: Free-form description.
    """

    type: ClassVar[StateType]

    id: str
    comment: str = ""

    def transitions(self) -> Iterator[tuple[str, str]]:
        """Yield ``(label, target)`` pairs for every outgoing transition."""
        yield from ()

    @property
    def is_terminal(self) -> bool:
        """Whether finishing this state ends the run."""
        return False


@dataclass(frozen=True, kw_only=True)
class TransitionState(State):
    """A state that either moves to ``next`` or ends the run."""

    next: str | None = None
    end: bool = False

    def transitions(self) -> Iterator[tuple[str, str]]:
        if self.next is not None:
            yield "next", self.next

    @property
    def is_terminal(self) -> bool:
        return self.end


@dataclass(frozen=True, kw_only=True)
class RecoverableState(TransitionState):
    """A state whose failures can be retried or caught."""

    retry: RetryPolicy | None = None
    catchers: tuple[Catcher, ...] = ()
    result_path: str | None = None

    def transitions(self) -> Iterator[tuple[str, str]]:
        yield from super().transitions()
        for catcher in self.catchers:
            yield f"catch {','.join(catcher.error_equals)}", catcher.next


@dataclass(frozen=True, kw_only=True)
class TaskState(RecoverableState):
    """Invokes an external job through the job runner.

    Attributes:
        resource: Job name handed to the runner; defaults to the state id.
        parameters: Static parameters, ``"$.path"`` values are resolved from context.
        timeout_seconds: Per-invocation deadline.
    """

    type: ClassVar[StateType] = StateType.TASK

    resource: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    timeout_seconds: float | None = None

    @property
    def resource_name(self) -> str:
        return self.resource or self.id


@dataclass(frozen=True, kw_only=True)
class ChoiceState(State):
    """Branches on the context: first matching rule wins, else ``default``."""

    type: ClassVar[StateType] = StateType.CHOICE

    choices: tuple[ChoiceRule, ...] = ()
    default: str | None = None

    def transitions(self) -> Iterator[tuple[str, str]]:
        for rule in self.choices:
            if rule.next is not None:
                yield rule.describe(), rule.next
        if self.default is not None:
            yield "default", self.default

    def select(self, context: Mapping[str, Any]) -> str:
        """Return the id of the next state for ``context``."""
        for rule in self.choices:
            if rule.evaluate(context):
                return rule.next  # type: ignore[return-value]
        return self.default  # type: ignore[return-value]


@dataclass(frozen=True, kw_only=True)
class WaitState(TransitionState):
    """Suspends the run.

    Exactly one of ``seconds``, ``seconds_path`` or ``timestamp_path`` is set.
    """

    type: ClassVar[StateType] = StateType.WAIT

    seconds: float | None = None
    seconds_path: str | None = None
    timestamp_path: str | None = None


@dataclass(frozen=True, kw_only=True)
class ParallelState(RecoverableState):
    """Runs every branch against its own copy of the context and joins on all."""

    type: ClassVar[StateType] = StateType.PARALLEL

    branches: tuple[WorkflowDefinition, ...] = ()


@dataclass(frozen=True, kw_only=True)
class MapState(RecoverableState):
    """Runs ``iterator`` once per item found at ``items_path``.

    Attributes:
        items_path: Context path of the sequence to iterate.
        iterator: Sub-workflow run for each item.
        max_concurrency: Upper bound on concurrently running items.
        tolerated_failure_count: Item failures allowed before the state fails;
            ``0`` means fail fast.
    """

    type: ClassVar[StateType] = StateType.MAP

    items_path: str = "items"
    iterator: WorkflowDefinition | None = None
    max_concurrency: int | None = None
    tolerated_failure_count: int = 0


@dataclass(frozen=True, kw_only=True)
class PassState(TransitionState):
    """Merges a fixed ``result`` into the context."""

    type: ClassVar[StateType] = StateType.PASS

    result: Any = None
    result_path: str | None = None


@dataclass(frozen=True, kw_only=True)
class FailState(State):
    """Ends the run as failed with the given error and cause."""

    type: ClassVar[StateType] = StateType.FAIL

    error: str = "States.Fail"
    cause: str | None = None

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True, kw_only=True)
class SucceedState(State):
    """Ends the run as succeeded."""

    type: ClassVar[StateType] = StateType.SUCCEED

    @property
    def is_terminal(self) -> bool:
        return True


StateDefinition: TypeAlias = Union[
    TaskState,
    ChoiceState,
    WaitState,
    ParallelState,
    MapState,
    PassState,
    FailState,
    SucceedState,
]
"""Closed union of every state kind."""
