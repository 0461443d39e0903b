"""Workflow execution engine.

This module provides the graph validator, the workflow registry, the wait
scheduler with its clocks, and the local execution engine that ties them together.
"""

from __future__ import annotations

from litestar_pipelines.engine.clock import Clock, ManualClock, SystemClock
from litestar_pipelines.engine.graph import WorkflowGraph, validate
from litestar_pipelines.engine.local import ExecutionEngine
from litestar_pipelines.engine.registry import WorkflowRegistry
from litestar_pipelines.engine.scheduler import WaitScheduler

__all__ = [
    "Clock",
    "ExecutionEngine",
    "ManualClock",
    "SystemClock",
    "WaitScheduler",
    "WorkflowGraph",
    "WorkflowRegistry",
    "validate",
]
