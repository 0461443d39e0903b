"""Validated workflow graphs.

This module turns a :class:`~litestar_pipelines.core.definition.WorkflowDefinition`
into an immutable :class:`WorkflowGraph`, checking structure along the way.
A graph is built once and shared read-only by every run that uses it.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from litestar_pipelines.core.states import (
    ChoiceState,
    MapState,
    ParallelState,
    TransitionState,
    WaitState,
)
from litestar_pipelines.core.types import StateType
from litestar_pipelines.exceptions import (
    CyclicWithoutGuardError,
    InvalidStateError,
    MalformedBranchError,
    MissingDefaultError,
    UnknownStateReferenceError,
    UnreachableStateError,
    WorkflowValidationError,
)

if TYPE_CHECKING:
    from litestar_pipelines.core.definition import WorkflowDefinition
    from litestar_pipelines.core.states import StateDefinition

__all__ = ["WorkflowGraph", "validate"]


class WorkflowGraph:
    """Immutable, validated representation of a state machine.

    Instances are only created by :func:`validate`. Every transition target is
    guaranteed to exist, every cycle is guarded, and Parallel/Map sub-graphs are
    validated graphs themselves.

    Attributes:
        definition: The definition this graph was validated from.
        name: Workflow name.
        version: Workflow version.
        start_at: Id of the first state.
        timeout_seconds: Optional deadline for a whole run.
    """

    __slots__ = ("_adjacency", "_frozen", "_reverse_adjacency", "_states", "_sub_graphs", "definition")

    def __init__(
        self,
        definition: WorkflowDefinition,
        sub_graphs: Mapping[str, tuple[WorkflowGraph, ...]],
    ) -> None:
        """Build adjacency lists. Use :func:`validate` instead of calling this directly.

        Args:
            definition: The already checked definition.
            sub_graphs: Validated branch/iterator graphs keyed by owning state id.
        """
        self.definition = definition
        self._states: Mapping[str, StateDefinition] = MappingProxyType(dict(definition.states))
        self._sub_graphs: Mapping[str, tuple[WorkflowGraph, ...]] = MappingProxyType(dict(sub_graphs))
        adjacency, reverse = _build_adjacency(definition.states)
        self._adjacency: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {key: tuple(value) for key, value in adjacency.items()}
        )
        self._reverse_adjacency: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {key: tuple(value) for key, value in reverse.items()}
        )
        self._frozen = True

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            msg = "WorkflowGraph is immutable"
            raise AttributeError(msg)
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return f"WorkflowGraph(name={self.name!r}, version={self.version!r}, states={len(self._states)})"

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def version(self) -> str:
        return self.definition.version

    @property
    def start_at(self) -> str:
        return self.definition.start_at

    @property
    def timeout_seconds(self) -> float | None:
        return self.definition.timeout_seconds

    @property
    def states(self) -> Mapping[str, StateDefinition]:
        """Read-only mapping of state id to state."""
        return self._states

    def get_state(self, state_id: str) -> StateDefinition:
        """Return the state with ``state_id``.

        Raises:
            KeyError: If the graph has no such state.
        """
        return self._states[state_id]

    def successors(self, state_id: str) -> tuple[str, ...]:
        """Ids of every state reachable in one transition from ``state_id``."""
        return self._adjacency.get(state_id, ())

    def predecessors(self, state_id: str) -> tuple[str, ...]:
        """Ids of every state with a transition into ``state_id``."""
        return self._reverse_adjacency.get(state_id, ())

    def is_terminal(self, state_id: str) -> bool:
        """Whether finishing ``state_id`` ends the run.

        Example:
            >>> graph.is_terminal("Done")
            True
        """
        return self._states[state_id].is_terminal

    def branches(self, state_id: str) -> tuple[WorkflowGraph, ...]:
        """Validated sub-graphs owned by a Parallel (one per branch) or Map (the iterator) state."""
        return self._sub_graphs.get(state_id, ())

    def reachable_states(self) -> set[str]:
        """Ids of every state reachable from the start state."""
        return _reachable(self.start_at, self._adjacency)

    def to_dict(self) -> dict[str, Any]:
        """Summary used by the HTTP surface and the run archive."""
        return {
            "name": self.name,
            "version": self.version,
            "comment": self.definition.comment,
            "start_at": self.start_at,
            "timeout_seconds": self.timeout_seconds,
            "states": {
                state_id: {
                    "type": str(state.type),
                    "transitions": [target for _, target in state.transitions()],
                    "terminal": state.is_terminal,
                }
                for state_id, state in self._states.items()
            },
        }

    def to_mermaid(self) -> str:
        """Generate a MermaidJS graph representation of the workflow.

        Returns:
            MermaidJS graph definition as a string.

        Example:
            >>> print(graph.to_mermaid())
            graph TD
                Start[START: Start]
                Check{Check}
                ...
        """
        lines = ["graph TD"]

        for state_id, state in self._states.items():
            shape_start, shape_end = _MERMAID_SHAPES.get(state.type, ("[", "]"))
            prefix = "START: " if state_id == self.start_at else ""
            if state.is_terminal and not prefix:
                prefix = "END: "
            lines.append(f"    {_mermaid_id(state_id)}{shape_start}{prefix}{state_id}{shape_end}")

        for state_id, state in self._states.items():
            for label, target in state.transitions():
                # Quotes break mermaid label syntax
                safe_label = label.replace("'", "").replace('"', "")
                edge = "-->" if label == "next" else f"-->|{safe_label}|"
                lines.append(f"    {_mermaid_id(state_id)} {edge} {_mermaid_id(target)}")

        return "\n".join(lines)

    def to_mermaid_with_state(
        self,
        current_state: str | None = None,
        completed_states: list[str] | None = None,
        failed_states: list[str] | None = None,
    ) -> str:
        """Generate a MermaidJS graph with execution state highlighting.

        Args:
            current_state: Id of the state the run is in.
            completed_states: Ids of states that completed successfully.
            failed_states: Ids of states that failed.

        Returns:
            MermaidJS graph definition with state styling.
        """
        lines = [self.to_mermaid()]
        for state_id in completed_states or []:
            lines.append(f"    style {_mermaid_id(state_id)} fill:#90EE90,stroke:#006400,stroke-width:2px")
        for state_id in failed_states or []:
            lines.append(f"    style {_mermaid_id(state_id)} fill:#FFB6C1,stroke:#8B0000,stroke-width:2px")
        if current_state:
            lines.append(f"    style {_mermaid_id(current_state)} fill:#FFD700,stroke:#FFA500,stroke-width:3px")
        return "\n".join(lines)


_MERMAID_SHAPES: dict[StateType, tuple[str, str]] = {
    StateType.CHOICE: ("{", "}"),
    StateType.WAIT: ("([", "])"),
    StateType.PARALLEL: ("[[", "]]"),
    StateType.MAP: ("[[", "]]"),
    StateType.SUCCEED: ("((", "))"),
    StateType.FAIL: ("((", "))"),
}


def _mermaid_id(state_id: str) -> str:
    return "".join(char if char.isalnum() or char == "_" else "_" for char in state_id)


def _build_adjacency(
    states: Mapping[str, StateDefinition],
) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    adjacency: dict[str, list[str]] = {state_id: [] for state_id in states}
    reverse: dict[str, list[str]] = {state_id: [] for state_id in states}
    for state_id, state in states.items():
        for _, target in state.transitions():
            if target not in adjacency[state_id]:
                adjacency[state_id].append(target)
            if target in reverse and state_id not in reverse[target]:
                reverse[target].append(state_id)
    return adjacency, reverse


def _reachable(start: str, adjacency: Mapping[str, tuple[str, ...] | list[str]]) -> set[str]:
    if start not in adjacency:
        return set()
    reachable: set[str] = set()
    to_visit = [start]
    while to_visit:
        current = to_visit.pop()
        if current in reachable:
            continue
        reachable.add(current)
        to_visit.extend(target for target in adjacency.get(current, ()) if target not in reachable)
    return reachable


def _strongly_connected(adjacency: Mapping[str, list[str]]) -> Iterator[set[str]]:
    """Tarjan's algorithm over the known states."""
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    counter = 0
    components: list[set[str]] = []

    def visit(node: str) -> None:
        nonlocal counter
        index[node] = lowlink[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for target in adjacency.get(node, []):
            if target not in adjacency:
                continue
            if target not in index:
                visit(target)
                lowlink[node] = min(lowlink[node], lowlink[target])
            elif target in on_stack:
                lowlink[node] = min(lowlink[node], index[target])
        if lowlink[node] == index[node]:
            component: set[str] = set()
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.add(member)
                if member == node:
                    break
            components.append(component)

    for node in adjacency:
        if node not in index:
            visit(node)
    yield from components


def _cyclic_components(
    adjacency: Mapping[str, list[str]],
    members: set[str] | None = None,
) -> Iterator[set[str]]:
    """Strongly connected components that contain a cycle, optionally within ``members``."""
    nodes = [node for node in adjacency if members is None or node in members]
    keep = set(nodes)
    sub = {node: [target for target in adjacency[node] if target in keep] for node in nodes}
    for component in _strongly_connected(sub):
        member = next(iter(component))
        if len(component) > 1 or member in sub[member]:
            yield component


def _unguarded_cycles(
    states: Mapping[str, StateDefinition],
    adjacency: Mapping[str, list[str]],
    component: set[str],
) -> Iterator[set[str]]:
    """Regions of ``component`` holding a cycle with no Choice that can leave it.

    A Choice guards every cycle of the component it can exit. Cycles avoiding
    those Choices live in smaller components, which are checked the same way.
    """
    guards = {
        state_id
        for state_id in component
        if isinstance(states[state_id], ChoiceState)
        and any(target not in component for target in adjacency[state_id])
    }
    if not guards:
        yield component
        return
    for inner in _cyclic_components(adjacency, component - guards):
        yield from _unguarded_cycles(states, adjacency, inner)


def _check_cycles(
    states: Mapping[str, StateDefinition],
    adjacency: Mapping[str, list[str]],
) -> list[str]:
    """Every cycle must pass through a Wait state and a Choice state with an exit."""
    errors = []
    for component in _cyclic_components(adjacency):
        waits = {state_id for state_id in component if isinstance(states[state_id], WaitState)}
        for cycle in _cyclic_components(adjacency, component - waits):
            errors.append(f"Cycle through [{', '.join(sorted(cycle))}] must pass through a Wait state")
        for cycle in _unguarded_cycles(states, adjacency, component):
            errors.append(
                f"Cycle through [{', '.join(sorted(cycle))}] must pass through a Choice state with an exit"
            )
    return errors


def _check_state(state: StateDefinition, known: Mapping[str, Any]) -> list[tuple[type[WorkflowValidationError], str]]:
    issues: list[tuple[type[WorkflowValidationError], str]] = []
    prefix = f"State '{state.id}'"

    for label, target in state.transitions():
        if target not in known:
            issues.append((UnknownStateReferenceError, f"{prefix}: {label} target '{target}' not found"))

    if isinstance(state, TransitionState):
        if state.next is not None and state.end:
            issues.append((InvalidStateError, f"{prefix}: cannot have both next and end"))
        elif state.next is None and not state.end:
            issues.append((InvalidStateError, f"{prefix}: needs either next or end"))

    if isinstance(state, ChoiceState):
        if not state.choices:
            issues.append((InvalidStateError, f"{prefix}: choice states need at least one rule"))
        if state.default is None:
            issues.append((MissingDefaultError, f"{prefix}: choice states need a default"))
    elif isinstance(state, WaitState):
        sources = [value for value in (state.seconds, state.seconds_path, state.timestamp_path) if value is not None]
        if len(sources) != 1:
            issues.append((InvalidStateError, f"{prefix}: set exactly one of seconds, seconds_path, timestamp_path"))
        elif state.seconds is not None and state.seconds < 0:
            issues.append((InvalidStateError, f"{prefix}: seconds must not be negative"))
    elif isinstance(state, MapState):
        if state.iterator is None:
            issues.append((MalformedBranchError, f"{prefix}: map states need an iterator"))
        if state.max_concurrency is not None and state.max_concurrency < 1:
            issues.append((InvalidStateError, f"{prefix}: max_concurrency must be at least 1"))
        if state.tolerated_failure_count < 0:
            issues.append((InvalidStateError, f"{prefix}: tolerated_failure_count must not be negative"))
    return issues


def validate(definition: WorkflowDefinition) -> WorkflowGraph:
    """Validate a definition and build its immutable graph.

    Checks that the start state and every transition target exist, that no state
    has both ``next`` and ``end``, that Choice states have rules and a default,
    that Parallel/Map sub-graphs validate on their own, that every state is
    reachable, and that every cycle passes through a Choice state with an exit and
    a Wait state.

    Args:
        definition: The parsed definition.

    Returns:
        The validated graph.

    Raises:
        WorkflowValidationError: The subclass matching the first problem found,
            carrying every problem message.

    Example:
        >>> graph = validate(WorkflowDefinition.from_document(document))
        >>> graph.is_terminal("Done")
        True
    """
    issues: list[tuple[type[WorkflowValidationError], str]] = []
    states = definition.states

    if definition.start_at not in states:
        issues.append((UnknownStateReferenceError, f"Start state '{definition.start_at}' not found in states"))

    sub_graphs: dict[str, tuple[WorkflowGraph, ...]] = {}
    for state_id, state in states.items():
        issues.extend(_check_state(state, states))

        children: list[WorkflowDefinition] = []
        if isinstance(state, ParallelState):
            children = list(state.branches)
        elif isinstance(state, MapState) and state.iterator is not None:
            children = [state.iterator]
        built = []
        for position, child in enumerate(children):
            try:
                built.append(validate(child))
            except WorkflowValidationError as e:
                issues.extend(
                    (MalformedBranchError, f"State '{state_id}' branch {position}: {error}") for error in e.errors
                )
        if children and len(built) == len(children):
            sub_graphs[state_id] = tuple(built)

    adjacency, _ = _build_adjacency(states)
    if definition.start_at in states:
        reachable = _reachable(definition.start_at, adjacency)
        for state_id in states:
            if state_id not in reachable:
                issues.append((UnreachableStateError, f"State '{state_id}' is unreachable from start state"))

    issues.extend((CyclicWithoutGuardError, message) for message in _check_cycles(states, adjacency))

    if issues:
        error_type = issues[0][0]
        raise error_type([message for _, message in issues])

    return WorkflowGraph(definition, sub_graphs)
