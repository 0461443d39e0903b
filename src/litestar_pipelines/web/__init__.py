"""Web API for litestar-pipelines.

This module provides the REST API controllers, DTOs and exception handlers
mounted by :class:`~litestar_pipelines.plugin.PipelinePlugin` when
``enable_api=True`` (the default).

Example:
    Mount the API under a custom prefix with an authentication guard::

        from litestar import Litestar
        from litestar_pipelines import PipelinePlugin, PipelinePluginConfig

        app = Litestar(
            plugins=[
                PipelinePlugin(
                    config=PipelinePluginConfig(
                        api_path_prefix="/api/v1/pipelines",
                        api_guards=[require_auth_guard],
                    )
                )
            ],
        )
"""

from __future__ import annotations

from litestar_pipelines.web.controllers import EventController, RunController, WorkflowController
from litestar_pipelines.web.dto import (
    CancelRunDTO,
    EventAcceptedDTO,
    EventDTO,
    GraphDTO,
    HistoryEntryDTO,
    RunDetailDTO,
    RunDTO,
    StartRunDTO,
    WorkflowDTO,
)
from litestar_pipelines.web.exceptions import EXCEPTION_HANDLERS
from litestar_pipelines.web.graph import parse_graph_to_dict, state_outcomes

__all__ = [
    "EXCEPTION_HANDLERS",
    "CancelRunDTO",
    "EventAcceptedDTO",
    "EventController",
    "EventDTO",
    "GraphDTO",
    "HistoryEntryDTO",
    "RunController",
    "RunDTO",
    "RunDetailDTO",
    "StartRunDTO",
    "WorkflowController",
    "WorkflowDTO",
    "parse_graph_to_dict",
    "state_outcomes",
]
