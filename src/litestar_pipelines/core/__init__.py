"""Core domain module for litestar-pipelines.

This module exports the fundamental building blocks for workflow definitions,
including state kinds, definitions, run models, context helpers and events.
"""

from __future__ import annotations

from litestar_pipelines.core.context import get_path, merge_output, resolve_parameters, set_path
from litestar_pipelines.core.definition import WorkflowDefinition, load_definition, parse_state
from litestar_pipelines.core.events import ErrorEvent, PipelineEvent, TransitionEvent
from litestar_pipelines.core.models import FanOut, HistoryEntry, Outcome, Run
from litestar_pipelines.core.states import (
    Catcher,
    ChoiceRule,
    ChoiceState,
    FailState,
    MapState,
    ParallelState,
    PassState,
    RetryPolicy,
    State,
    StateDefinition,
    SucceedState,
    TaskState,
    WaitState,
)
from litestar_pipelines.core.types import Context, HistoryEventType, RunStatus, StateType

__all__ = [
    "Catcher",
    "ChoiceRule",
    "ChoiceState",
    "Context",
    "ErrorEvent",
    "FailState",
    "FanOut",
    "HistoryEntry",
    "HistoryEventType",
    "MapState",
    "Outcome",
    "ParallelState",
    "PassState",
    "PipelineEvent",
    "RetryPolicy",
    "Run",
    "RunStatus",
    "State",
    "StateDefinition",
    "StateType",
    "SucceedState",
    "TaskState",
    "TransitionEvent",
    "WaitState",
    "WorkflowDefinition",
    "get_path",
    "load_definition",
    "merge_output",
    "parse_state",
    "resolve_parameters",
    "set_path",
]
