"""REST API controllers for pipeline management.

This module provides three controller classes:
- WorkflowController: Register, list and inspect workflow graphs
- RunController: Start, monitor and cancel runs
- EventController: Submit events to the trigger gateway
"""

from __future__ import annotations

from typing import Any, ClassVar

from litestar import Controller, get, post
from litestar.exceptions import NotFoundException, ValidationException
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_202_ACCEPTED

from litestar_pipelines.core.types import RunStatus
from litestar_pipelines.db.stores import SQLAlchemyDefinitionStore  # noqa: TC001 - needed for DI
from litestar_pipelines.engine.local import ExecutionEngine  # noqa: TC001 - needed for DI
from litestar_pipelines.engine.registry import WorkflowRegistry  # noqa: TC001 - needed for DI
from litestar_pipelines.triggers.gateway import TriggerGateway  # noqa: TC001 - needed for DI
from litestar_pipelines.triggers.rules import Event
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
from litestar_pipelines.web.graph import parse_graph_to_dict, state_outcomes

__all__ = [
    "EventController",
    "RunController",
    "WorkflowController",
]


class WorkflowController(Controller):
    """API controller for workflow graphs.

    Tags: Workflows
    """

    path = "/workflows"
    tags: ClassVar[list[str]] = ["Workflows"]

    @get("/")
    async def list_workflows(
        self,
        pipeline_registry: WorkflowRegistry,
        active_only: bool = Parameter(
            default=True,
            description="Only return the latest version of each workflow",
        ),
    ) -> list[WorkflowDTO]:
        """List registered workflows.

        Args:
            pipeline_registry: Injected workflow registry.
            active_only: Whether to collapse each workflow to its latest version.

        Returns:
            List of workflow DTOs.
        """
        return [
            WorkflowDTO.from_graph(graph, pipeline_registry.get_versions(graph.name))
            for graph in pipeline_registry.list_graphs(active_only=active_only)
        ]

    @post("/")
    async def register_workflow(
        self,
        data: dict[str, Any],
        pipeline_registry: WorkflowRegistry,
        pipeline_definition_store: SQLAlchemyDefinitionStore | None,
    ) -> WorkflowDTO:
        """Validate and register a workflow document.

        The document is validated in full before anything is registered, so a
        rejected document leaves the registry untouched. Validation failures are
        returned as a 400 listing every problem.

        Args:
            data: The workflow definition document.
            pipeline_registry: Injected workflow registry.
            pipeline_definition_store: Injected definition store, if persistence is configured.

        Returns:
            The registered workflow.
        """
        graph = pipeline_registry.register(data)
        if pipeline_definition_store is not None:
            await pipeline_definition_store.save(graph)
        return WorkflowDTO.from_graph(graph, pipeline_registry.get_versions(graph.name))

    @get("/{name:str}")
    async def get_workflow(
        self,
        name: str,
        pipeline_registry: WorkflowRegistry,
        version: str | None = Parameter(
            default=None,
            description="Specific version to retrieve. If omitted, returns latest.",
        ),
    ) -> WorkflowDTO:
        """Get a registered workflow by name.

        Args:
            name: The workflow name.
            pipeline_registry: Injected workflow registry.
            version: Optional specific version to retrieve.

        Returns:
            Workflow DTO.
        """
        graph = pipeline_registry.get_graph(name, version)
        return WorkflowDTO.from_graph(graph, pipeline_registry.get_versions(name))

    @get("/{name:str}/graph")
    async def get_workflow_graph(
        self,
        name: str,
        pipeline_registry: WorkflowRegistry,
        version: str | None = Parameter(default=None, description="Workflow version"),
        graph_format: str = Parameter(
            default="mermaid",
            description="Graph format: 'mermaid' or 'json'",
        ),
    ) -> GraphDTO:
        """Get workflow graph visualization.

        Args:
            name: The workflow name.
            pipeline_registry: Injected workflow registry.
            version: Optional workflow version.
            graph_format: Graph format ('mermaid' or 'json').

        Returns:
            Graph DTO with visualization data.

        Raises:
            NotFoundException: If the format is unknown.
        """
        graph = pipeline_registry.get_graph(name, version)
        if graph_format not in {"mermaid", "json"}:
            raise NotFoundException(detail=f"Unknown format: {graph_format}")
        graph_dict = parse_graph_to_dict(graph)
        return GraphDTO(
            mermaid_source=graph.to_mermaid() if graph_format == "mermaid" else "",
            nodes=graph_dict["nodes"],
            edges=graph_dict["edges"],
        )


class RunController(Controller):
    """API controller for runs.

    Tags: Runs
    """

    path = "/runs"
    tags: ClassVar[list[str]] = ["Runs"]

    @post("/")
    async def start_run(
        self,
        data: StartRunDTO,
        pipeline_engine: ExecutionEngine,
    ) -> RunDTO:
        """Start a run of a registered workflow.

        Args:
            data: Run start parameters.
            pipeline_engine: Injected execution engine.

        Returns:
            The started run.
        """
        run = await pipeline_engine.start_run(
            data.workflow,
            data.input_data or {},
            run_id=data.run_id,
            version=data.version,
        )
        return RunDTO.from_run(run)

    @get("/")
    async def list_runs(
        self,
        pipeline_engine: ExecutionEngine,
        workflow_name: str | None = Parameter(
            default=None,
            description="Filter by workflow name",
        ),
        status: str | None = Parameter(
            default=None,
            description="Filter by status",
        ),
        include_children: bool = Parameter(
            default=False,
            description="Include Parallel branch and Map item runs",
        ),
        limit: int = Parameter(
            default=50,
            le=100,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> list[RunDTO]:
        """List runs with optional filtering.

        Args:
            pipeline_engine: Injected execution engine.
            workflow_name: Optional workflow name filter.
            status: Optional status filter.
            include_children: Whether to include child runs.
            limit: Maximum number of results.
            offset: Pagination offset.

        Returns:
            List of run DTOs, oldest first.

        Raises:
            ValidationException: If ``status`` is not a run status.
        """
        try:
            run_status = RunStatus(status) if status else None
        except ValueError as e:
            raise ValidationException(detail=f"Unknown run status: {status}") from e

        runs = pipeline_engine.list_runs(workflow_name, run_status, include_children=include_children)
        return [RunDTO.from_run(run) for run in runs[offset : offset + limit]]

    @get("/{run_id:str}")
    async def get_run(
        self,
        run_id: str,
        pipeline_engine: ExecutionEngine,
    ) -> RunDetailDTO:
        """Get detailed run information.

        Args:
            run_id: The run id.
            pipeline_engine: Injected execution engine.

        Returns:
            Detailed run DTO.
        """
        return RunDetailDTO.from_run(pipeline_engine.get_run(run_id))

    @get("/{run_id:str}/history")
    async def get_run_history(
        self,
        run_id: str,
        pipeline_engine: ExecutionEngine,
    ) -> list[HistoryEntryDTO]:
        """Get the execution history of a run, in order.

        Args:
            run_id: The run id.
            pipeline_engine: Injected execution engine.

        Returns:
            History entries ordered by timestamp then sequence.
        """
        pipeline_engine.get_run(run_id)
        entries = await pipeline_engine.history_of(run_id).to_list()
        return [HistoryEntryDTO.from_entry(entry) for entry in entries]

    @get("/{run_id:str}/graph")
    async def get_run_graph(
        self,
        run_id: str,
        pipeline_engine: ExecutionEngine,
    ) -> GraphDTO:
        """Get the run's workflow graph with execution state highlighting.

        Args:
            run_id: The run id.
            pipeline_engine: Injected execution engine.

        Returns:
            Graph DTO with completed, failed and current states styled.
        """
        run = pipeline_engine.get_run(run_id)
        completed, failed = state_outcomes(await pipeline_engine.history_of(run_id).to_list())
        graph_dict = parse_graph_to_dict(run.graph)
        return GraphDTO(
            mermaid_source=run.graph.to_mermaid_with_state(
                current_state=None if run.is_terminal else run.current_state,
                completed_states=completed,
                failed_states=failed,
            ),
            nodes=graph_dict["nodes"],
            edges=graph_dict["edges"],
        )

    @post("/{run_id:str}/cancel", status_code=HTTP_200_OK)
    async def cancel_run(
        self,
        run_id: str,
        pipeline_engine: ExecutionEngine,
        data: CancelRunDTO | None = None,
    ) -> RunDTO:
        """Cancel a run.

        A suspended run is cancelled before the response is sent. A run with a
        step in flight stops at its next checkpoint. Cancelling a finished run
        returns 409.

        Args:
            run_id: The run id.
            pipeline_engine: Injected execution engine.
            data: Optional cancellation reason.

        Returns:
            The run after the cancellation request.
        """
        run = await pipeline_engine.cancel(run_id, data.reason if data else None)
        return RunDTO.from_run(run)


class EventController(Controller):
    """API controller for inbound events.

    Tags: Events
    """

    path = "/events"
    tags: ClassVar[list[str]] = ["Events"]

    @post("/", status_code=HTTP_202_ACCEPTED)
    async def submit_event(
        self,
        data: EventDTO,
        pipeline_gateway: TriggerGateway,
    ) -> EventAcceptedDTO:
        """Match an event against the trigger rules and queue the resulting runs.

        Runs are started asynchronously by the gateway worker; the returned run
        ids can be polled on ``/runs/{run_id}`` once started.

        Args:
            data: The event.
            pipeline_gateway: Injected trigger gateway.

        Returns:
            The event id and the run ids allocated for it.
        """
        event_data: dict[str, Any] = {"id": data.id, "source": data.source, "detail": data.detail or {}}
        if data.time is not None:
            event_data["time"] = data.time
        run_ids = await pipeline_gateway.submit(Event.from_dict(event_data))
        return EventAcceptedDTO(event_id=data.id, run_ids=run_ids)
