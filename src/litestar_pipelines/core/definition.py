"""Workflow definition documents.

This module turns the declarative definition document (states keyed by id, each
with a ``type``, parameters and transitions) into typed state dataclasses. It does
not check graph structure; see :func:`litestar_pipelines.engine.graph.validate`.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from litestar_pipelines.core.states import (
    COMPARISON_OPERATORS,
    Catcher,
    ChoiceRule,
    ChoiceState,
    FailState,
    MapState,
    ParallelState,
    PassState,
    RetryPolicy,
    StateDefinition,
    SucceedState,
    TaskState,
    WaitState,
)
from litestar_pipelines.core.types import StateType
from litestar_pipelines.exceptions import InvalidStateError

__all__ = ["WorkflowDefinition", "load_definition", "parse_state"]


@dataclass
class WorkflowDefinition:
    """Declarative workflow structure, before validation.

    Attributes:
        name: Unique identifier for the workflow.
        version: Version string for workflow versioning.
        start_at: Id of the first state.
        states: Mapping of state id to parsed state.
        comment: Human-readable description.
        timeout_seconds: Optional deadline for a whole run.
        document: The source document, kept for serialization.

    Example:
        >>> definition = WorkflowDefinition.from_document(
        ...     {
        ...         "name": "ingest",
        ...         "start_at": "Crawl",
        ...         "states": {
        ...             "Crawl": {"type": "Task", "resource": "crawler", "next": "Done"},
        ...             "Done": {"type": "Succeed"},
        ...         },
        ...     }
        ... )
        >>> definition.start_at
        'Crawl'
    """

    name: str
    start_at: str
    states: dict[str, StateDefinition]
    version: str = "1.0.0"
    comment: str = ""
    timeout_seconds: float | None = None
    document: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_document(cls, document: Mapping[str, Any], name: str | None = None) -> WorkflowDefinition:
        """Parse a definition document.

        Args:
            document: The declarative document.
            name: Name to use when the document has none (branches, iterators).

        Returns:
            The parsed definition.

        Raises:
            InvalidStateError: If the document or any state has an invalid shape.
        """
        errors: list[str] = []
        workflow_name = document.get("name") or name
        if not workflow_name:
            errors.append("Definition has no name")
        start_at = document.get("start_at")
        if not isinstance(start_at, str) or not start_at:
            errors.append("Definition has no start_at state")
        raw_states = document.get("states")
        if not isinstance(raw_states, Mapping) or not raw_states:
            errors.append("Definition has no states")
            raw_states = {}

        states: dict[str, StateDefinition] = {}
        for state_id, state_doc in raw_states.items():
            try:
                states[state_id] = parse_state(state_id, state_doc, workflow_name=str(workflow_name))
            except InvalidStateError as e:
                errors.extend(e.errors)

        if errors:
            raise InvalidStateError(errors)

        timeout = document.get("timeout_seconds")
        return cls(
            name=str(workflow_name),
            version=str(document.get("version", "1.0.0")),
            start_at=str(start_at),
            states=states,
            comment=str(document.get("comment", "")),
            timeout_seconds=float(timeout) if timeout is not None else None,
            document=copy.deepcopy(dict(document)),
        )

    def to_document(self) -> dict[str, Any]:
        """Return the source document this definition was parsed from."""
        return copy.deepcopy(self.document)


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Read and parse a JSON definition document from disk.

    Args:
        path: Path to the JSON file.

    Returns:
        The parsed definition. Call ``validate`` before running it.
    """
    source = Path(path)
    document = json.loads(source.read_text(encoding="utf-8"))
    return WorkflowDefinition.from_document(document, name=source.stem)


def _invalid(state_id: str, message: str) -> InvalidStateError:
    return InvalidStateError([f"State '{state_id}': {message}"])


def _patterns(state_id: str, value: Any) -> tuple[str, ...]:
    if value is None:
        return ("*",)
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and value and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise _invalid(state_id, "error_equals must be a non-empty list of strings")


def _parse_retry(state_id: str, doc: Any) -> RetryPolicy | None:
    if doc is None:
        return None
    if not isinstance(doc, Mapping):
        raise _invalid(state_id, "retry must be a mapping")
    policy = RetryPolicy(
        error_equals=_patterns(state_id, doc.get("error_equals")),
        max_attempts=int(doc.get("max_attempts", 3)),
        interval_seconds=float(doc.get("interval_seconds", 1.0)),
        backoff_rate=float(doc.get("backoff_rate", 2.0)),
        max_delay_seconds=float(doc.get("max_delay_seconds", 60.0)),
    )
    if policy.max_attempts < 0 or policy.interval_seconds < 0 or policy.backoff_rate < 1:
        raise _invalid(state_id, "retry needs max_attempts >= 0, interval_seconds >= 0 and backoff_rate >= 1")
    return policy


def _parse_catchers(state_id: str, docs: Any) -> tuple[Catcher, ...]:
    if docs is None:
        return ()
    if not isinstance(docs, list):
        raise _invalid(state_id, "catch must be a list")
    catchers = []
    for doc in docs:
        if not isinstance(doc, Mapping) or not isinstance(doc.get("next"), str):
            raise _invalid(state_id, "every catcher needs a next state")
        catchers.append(
            Catcher(
                next=doc["next"],
                error_equals=_patterns(state_id, doc.get("error_equals")),
                result_path=str(doc.get("result_path", "error")),
            )
        )
    return tuple(catchers)


def _parse_rule(state_id: str, doc: Any, *, top_level: bool) -> ChoiceRule:
    if not isinstance(doc, Mapping):
        raise _invalid(state_id, "choice rules must be mappings")
    next_state = doc.get("next")
    if top_level and not isinstance(next_state, str):
        raise _invalid(state_id, "every top-level choice rule needs a next state")

    for logical in ("and", "or"):
        if logical in doc:
            nested = doc[logical]
            if not isinstance(nested, list) or not nested:
                raise _invalid(state_id, f"'{logical}' needs a non-empty list of rules")
            rules = tuple(_parse_rule(state_id, item, top_level=False) for item in nested)
            return ChoiceRule(operator=logical, rules=rules, next=next_state)
    if "not" in doc:
        return ChoiceRule(operator="not", rules=(_parse_rule(state_id, doc["not"], top_level=False),), next=next_state)

    variable = doc.get("variable")
    if not isinstance(variable, str):
        raise _invalid(state_id, "comparison rules need a variable")
    operators = [key for key in doc if key in COMPARISON_OPERATORS]
    if len(operators) != 1:
        raise _invalid(state_id, f"rule on '{variable}' needs exactly one comparison operator")
    return ChoiceRule(operator=operators[0], variable=variable, value=doc[operators[0]], next=next_state)


def _transition_fields(state_id: str, doc: Mapping[str, Any]) -> dict[str, Any]:
    next_state = doc.get("next")
    if next_state is not None and not isinstance(next_state, str):
        raise _invalid(state_id, "next must be a state id")
    return {"next": next_state, "end": bool(doc.get("end", False))}


def _recoverable_fields(state_id: str, doc: Mapping[str, Any]) -> dict[str, Any]:
    return {
        **_transition_fields(state_id, doc),
        "retry": _parse_retry(state_id, doc.get("retry")),
        "catchers": _parse_catchers(state_id, doc.get("catch")),
        "result_path": doc.get("result_path"),
    }


def _sub_definition(state_id: str, doc: Any, name: str) -> WorkflowDefinition:
    if not isinstance(doc, Mapping):
        raise _invalid(state_id, "branches and iterators must be definition documents")
    try:
        return WorkflowDefinition.from_document(doc, name=name)
    except InvalidStateError as e:
        raise InvalidStateError([f"State '{state_id}' -> {error}" for error in e.errors]) from e


def parse_state(state_id: str, doc: Mapping[str, Any], workflow_name: str = "workflow") -> StateDefinition:
    """Parse a single state document into its typed dataclass.

    Args:
        state_id: The id of the state in its graph.
        doc: The state document.
        workflow_name: Name of the owning workflow, used to name sub-definitions.

    Returns:
        The parsed state.

    Raises:
        InvalidStateError: If the document has an unknown type or an invalid shape.
    """
    if not isinstance(doc, Mapping):
        raise _invalid(state_id, "state must be a mapping")
    try:
        state_type = StateType(doc.get("type"))
    except ValueError as e:
        raise _invalid(state_id, f"unknown state type {doc.get('type')!r}") from e

    common: dict[str, Any] = {"id": state_id, "comment": str(doc.get("comment", ""))}

    if state_type is StateType.TASK:
        parameters = doc.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise _invalid(state_id, "parameters must be a mapping")
        timeout = doc.get("timeout_seconds")
        return TaskState(
            **common,
            **_recoverable_fields(state_id, doc),
            resource=doc.get("resource"),
            parameters=dict(parameters),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
    if state_type is StateType.CHOICE:
        choices = doc.get("choices") or []
        if not isinstance(choices, list):
            raise _invalid(state_id, "choices must be a list")
        return ChoiceState(
            **common,
            choices=tuple(_parse_rule(state_id, rule, top_level=True) for rule in choices),
            default=doc.get("default"),
        )
    if state_type is StateType.WAIT:
        seconds = doc.get("seconds")
        return WaitState(
            **common,
            **_transition_fields(state_id, doc),
            seconds=float(seconds) if seconds is not None else None,
            seconds_path=doc.get("seconds_path"),
            timestamp_path=doc.get("timestamp_path"),
        )
    if state_type is StateType.PARALLEL:
        branches = doc.get("branches")
        if not isinstance(branches, list) or not branches:
            raise _invalid(state_id, "parallel states need a non-empty list of branches")
        return ParallelState(
            **common,
            **_recoverable_fields(state_id, doc),
            branches=tuple(
                _sub_definition(state_id, branch, f"{workflow_name}.{state_id}[{index}]")
                for index, branch in enumerate(branches)
            ),
        )
    if state_type is StateType.MAP:
        max_concurrency = doc.get("max_concurrency")
        return MapState(
            **common,
            **_recoverable_fields(state_id, doc),
            items_path=str(doc.get("items_path", "items")),
            iterator=_sub_definition(state_id, doc.get("iterator"), f"{workflow_name}.{state_id}"),
            max_concurrency=int(max_concurrency) if max_concurrency else None,
            tolerated_failure_count=int(doc.get("tolerated_failure_count", 0)),
        )
    if state_type is StateType.PASS:
        return PassState(
            **common,
            **_transition_fields(state_id, doc),
            result=copy.deepcopy(doc.get("result")),
            result_path=doc.get("result_path"),
        )
    if state_type is StateType.FAIL:
        return FailState(**common, error=str(doc.get("error", "States.Fail")), cause=doc.get("cause"))
    return SucceedState(**common)
