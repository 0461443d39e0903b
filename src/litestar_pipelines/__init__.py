"""Litestar Pipelines - Durable state-machine orchestration for Litestar.

This package runs declarative workflow definitions as durable state machines:
task steps backed by pluggable job runners, branching, waits, parallel
branches and map iteration, with retries, error catchers, timeouts and an
append-only execution history.

Key Features:
    - Declarative, validated workflow definitions
    - Task, Choice, Wait, Parallel, Map, Pass, Fail and Succeed states
    - Retries with backoff, catchers and per-step and per-run timeouts
    - Event and schedule triggers with deduplication
    - In-memory or SQLAlchemy backed history and run stores
    - Litestar plugin with a REST API

Example:
    >>> from litestar_pipelines import CallableJobRunner, ExecutionEngine, WorkflowRegistry
    >>>
    >>> runner = CallableJobRunner({"crawler": lambda parameters, context: {"pages": 3}})
    >>> registry = WorkflowRegistry()
    >>> registry.register(
    ...     {
    ...         "name": "ingest",
    ...         "start_at": "Crawl",
    ...         "states": {
    ...             "Crawl": {"type": "Task", "resource": "crawler", "next": "Done"},
    ...             "Done": {"type": "Succeed"},
    ...         },
    ...     }
    ... )
    >>> engine = ExecutionEngine(registry, runner)
    >>> run = await engine.start_run("ingest", {"bucket": "raw"})
"""

from __future__ import annotations

from litestar_pipelines.__metadata__ import __project__, __version__
from litestar_pipelines.config import EngineConfig, GatewayConfig
from litestar_pipelines.core import (
    HistoryEntry,
    HistoryEventType,
    Outcome,
    Run,
    RunStatus,
    StateType,
    WorkflowDefinition,
    load_definition,
)
from litestar_pipelines.engine import ExecutionEngine, ManualClock, SystemClock, WorkflowGraph, WorkflowRegistry, validate
from litestar_pipelines.exceptions import (
    CancellationError,
    ExecutionTimeoutError,
    PersistenceError,
    PipelinesError,
    RunAlreadyTerminalError,
    RunNotFoundError,
    StepExecutionError,
    TriggerConfigurationError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from litestar_pipelines.history import InMemoryHistoryStore, InMemoryRunStore
from litestar_pipelines.observability import LoggingSink, RecordingSink
from litestar_pipelines.plugin import PipelinePlugin, PipelinePluginConfig
from litestar_pipelines.runners import CallableJobRunner, JobResult
from litestar_pipelines.triggers import Event, TriggerGateway, TriggerRule

__all__ = (
    "CallableJobRunner",
    "CancellationError",
    "EngineConfig",
    "Event",
    "ExecutionEngine",
    "ExecutionTimeoutError",
    "GatewayConfig",
    "HistoryEntry",
    "HistoryEventType",
    "InMemoryHistoryStore",
    "InMemoryRunStore",
    "JobResult",
    "LoggingSink",
    "ManualClock",
    "Outcome",
    "PersistenceError",
    "PipelinePlugin",
    "PipelinePluginConfig",
    "PipelinesError",
    "RecordingSink",
    "Run",
    "RunAlreadyTerminalError",
    "RunNotFoundError",
    "RunStatus",
    "StateType",
    "StepExecutionError",
    "SystemClock",
    "TriggerConfigurationError",
    "TriggerGateway",
    "TriggerRule",
    "WorkflowDefinition",
    "WorkflowGraph",
    "WorkflowNotFoundError",
    "WorkflowRegistry",
    "WorkflowValidationError",
    "__project__",
    "__version__",
    "load_definition",
    "validate",
)
