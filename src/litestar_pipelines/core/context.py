"""Helpers for reading and writing the run context.

The context is a plain JSON-like ``dict`` threaded through every state of a run.
Paths are dotted (``"crawler.status"``); parameter values written as ``"$.path"``
are resolved against the context when a Task is dispatched.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

__all__ = [
    "MISSING",
    "get_path",
    "merge_output",
    "resolve_parameters",
    "set_path",
    "snapshot",
]

REFERENCE_PREFIX = "$."


class _Missing:
    """Sentinel for absent context paths."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def get_path(data: Mapping[str, Any], path: str, default: Any = MISSING) -> Any:
    """Look up a dotted path in a nested mapping.

    Args:
        data: The mapping to read from.
        path: Dotted key path, e.g. ``"job.status"``. A leading ``"$."`` is ignored.
        default: Value returned when any segment is missing.

    Returns:
        The value at ``path`` or ``default``.

    Example:
        >>> get_path({"job": {"status": "READY"}}, "job.status")
        'READY'
    """
    if path.startswith(REFERENCE_PREFIX):
        path = path[len(REFERENCE_PREFIX) :]
    current: Any = data
    for segment in path.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return default
    return current


def set_path(data: dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating intermediate dicts."""
    if path.startswith(REFERENCE_PREFIX):
        path = path[len(REFERENCE_PREFIX) :]
    *parents, leaf = path.split(".")
    current = data
    for segment in parents:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[leaf] = value


def resolve_parameters(parameters: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve ``"$.path"`` references in task parameters against the context.

    Nested mappings and lists are resolved recursively; unresolvable references
    become ``None``.

    Args:
        parameters: Static parameters from the state definition.
        context: The run context.

    Returns:
        A new dict with every reference replaced by its value.
    """

    def _resolve(value: Any) -> Any:
        if isinstance(value, str) and value.startswith(REFERENCE_PREFIX):
            found = get_path(context, value)
            return None if found is MISSING else copy.deepcopy(found)
        if isinstance(value, Mapping):
            return {key: _resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [_resolve(item) for item in value]
        return value

    return {key: _resolve(value) for key, value in parameters.items()}


def merge_output(context: dict[str, Any], output: Any, result_path: str | None) -> None:
    """Merge a step's output into the context.

    With a ``result_path`` the output is stored at that path. Without one, mapping
    outputs are merged key by key and any other non-``None`` output is stored
    under ``"result"``.
    """
    if result_path:
        set_path(context, result_path, output)
    elif isinstance(output, Mapping):
        context.update(output)
    elif output is not None:
        context["result"] = output


def snapshot(context: Mapping[str, Any]) -> dict[str, Any]:
    """Return a deep copy of the context suitable for history and retries."""
    return copy.deepcopy(dict(context))
