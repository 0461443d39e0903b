"""Event pattern matching.

A pattern is a mapping from dotted key paths to conditions, evaluated against
an event document ``{"id", "source", "time", "detail"}``. Every key must match.
A condition is one of:

* a scalar, matched by equality;
* a list, matched when the value equals any element;
* ``{"prefix": "raw/"}``, matched when the value is a string with that prefix;
* ``{"exists": true}`` or ``{"exists": false}``;
* a nested mapping without those keys, matched recursively.

Example:
    >>> pattern = {"source": "storage", "detail.key": {"prefix": "raw/"}}
    >>> matches(pattern, {"source": "storage", "detail": {"key": "raw/2024.csv"}})
    True
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from litestar_pipelines.core.context import MISSING, get_path
from litestar_pipelines.exceptions import TriggerConfigurationError

__all__ = ["matches", "validate_pattern"]

_OPERATORS = frozenset({"prefix", "exists"})


def _is_operator(condition: Any) -> bool:
    return isinstance(condition, Mapping) and len(condition) == 1 and next(iter(condition)) in _OPERATORS


def _condition_matches(condition: Any, value: Any) -> bool:
    if _is_operator(condition):
        operator, operand = next(iter(condition.items()))
        if operator == "exists":
            return (value is not MISSING) is bool(operand)
        return isinstance(value, str) and value.startswith(str(operand))
    if value is MISSING:
        return False
    if isinstance(condition, Mapping):
        return isinstance(value, Mapping) and matches(condition, value)
    if isinstance(condition, list):
        return any(_condition_matches(option, value) for option in condition)
    return bool(value == condition)


def matches(pattern: Mapping[str, Any], document: Mapping[str, Any]) -> bool:
    """Whether ``document`` satisfies every condition of ``pattern``."""
    return all(_condition_matches(condition, get_path(document, key)) for key, condition in pattern.items())


def validate_pattern(pattern: Any) -> None:
    """Check the shape of a pattern.

    Raises:
        TriggerConfigurationError: If the pattern is empty or uses a malformed operator.
    """
    if not isinstance(pattern, Mapping) or not pattern:
        msg = "Event pattern must be a non-empty mapping"
        raise TriggerConfigurationError(msg)
    for key, condition in pattern.items():
        if isinstance(condition, Mapping):
            if _OPERATORS & condition.keys() and not _is_operator(condition):
                msg = f"Pattern key '{key}' mixes an operator with other keys"
                raise TriggerConfigurationError(msg)
            if not _is_operator(condition):
                validate_pattern(condition)
        elif isinstance(condition, list) and not condition:
            msg = f"Pattern key '{key}' has an empty list of alternatives"
            raise TriggerConfigurationError(msg)
