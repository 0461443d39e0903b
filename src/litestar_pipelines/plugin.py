"""Litestar plugin for pipeline integration.

This module provides the PipelinePlugin, which wires the registry, the
execution engine and the trigger gateway into a Litestar application.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_pipelines.db.stores import SQLAlchemyDefinitionStore  # noqa: TC001 - needed for DI
from litestar_pipelines.engine.local import ExecutionEngine
from litestar_pipelines.engine.registry import WorkflowRegistry
from litestar_pipelines.runners import CallableJobRunner
from litestar_pipelines.triggers.gateway import TriggerGateway

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from litestar_pipelines.config import EngineConfig, GatewayConfig
    from litestar_pipelines.engine.clock import Clock
    from litestar_pipelines.engine.registry import WorkflowSource
    from litestar_pipelines.history import HistoryStore, RunStore
    from litestar_pipelines.observability import ObservabilitySink
    from litestar_pipelines.runners import JobRunner
    from litestar_pipelines.triggers.rules import TriggerRule

__all__ = ["PipelinePlugin", "PipelinePluginConfig"]

logger = logging.getLogger(__name__)


@dataclass
class PipelinePluginConfig:
    """Configuration for the PipelinePlugin.

    Attributes:
        registry: Optional pre-configured WorkflowRegistry. If not provided,
            a new one will be created.
        engine: Optional pre-configured ExecutionEngine. If not provided, one is
            built from the registry and the store, runner and clock options below.
        job_runner: Job runner for Task states. Defaults to an empty CallableJobRunner.
        history: History store handed to a created engine.
        run_store: Run store handed to a created engine.
        definition_store: Optional store of workflow documents. Active documents are
            registered on startup and documents posted to the API are saved.
        clock: Clock handed to a created engine.
        sink: Observability sink handed to a created engine.
        engine_config: Engine tunables handed to a created engine.
        gateway_config: Trigger gateway tunables.
        workflows: Workflow documents, definitions or graphs to register on init.
        triggers: Trigger rules to install in the gateway.
        dependency_key_registry: The key used for dependency injection of
            the WorkflowRegistry. Defaults to "pipeline_registry".
        dependency_key_engine: The key used for dependency injection of
            the ExecutionEngine. Defaults to "pipeline_engine".
        dependency_key_gateway: The key used for dependency injection of
            the TriggerGateway. Defaults to "pipeline_gateway".
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all pipeline API endpoints.
            Defaults to "/pipelines".
        api_guards: List of Litestar guards to apply to all pipeline API endpoints.
        api_tags: OpenAPI tags to apply to pipeline API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
            Defaults to True.
        run_scheduler: Whether to tick the engine and run the gateway in the
            background while the app is up. Defaults to True.
        recover_on_startup: Whether to resume ``RUNNING`` runs from the run store
            on startup. Defaults to True.
    """

    registry: WorkflowRegistry | None = None
    engine: ExecutionEngine | None = None
    job_runner: JobRunner | None = None
    history: HistoryStore | None = None
    run_store: RunStore | None = None
    definition_store: SQLAlchemyDefinitionStore | None = None
    clock: Clock | None = None
    sink: ObservabilitySink | None = None
    engine_config: EngineConfig | None = None
    gateway_config: GatewayConfig | None = None
    workflows: list[WorkflowSource] = field(default_factory=list)
    triggers: list[TriggerRule] = field(default_factory=list)
    dependency_key_registry: str = "pipeline_registry"
    dependency_key_engine: str = "pipeline_engine"
    dependency_key_gateway: str = "pipeline_gateway"
    enable_api: bool = True
    api_path_prefix: str = "/pipelines"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Pipelines"])
    include_api_in_schema: bool = True
    run_scheduler: bool = True
    recover_on_startup: bool = True


class PipelinePlugin(InitPluginProtocol):
    """Litestar plugin for pipeline orchestration.

    This plugin integrates litestar-pipelines with a Litestar application,
    providing dependency injection for the WorkflowRegistry, ExecutionEngine
    and TriggerGateway, and running the scheduler loop for the app's lifetime.

    Example:
        Basic usage::

            from litestar import Litestar
            from litestar_pipelines import CallableJobRunner, PipelinePlugin, PipelinePluginConfig

            runner = CallableJobRunner()


            @runner.job("crawler")
            async def crawl(parameters, context):
                return {"pages": 12}


            app = Litestar(
                plugins=[
                    PipelinePlugin(
                        config=PipelinePluginConfig(
                            job_runner=runner,
                            workflows=[load_definition("ingest.json")],
                            triggers=[TriggerRule(name="nightly", workflow="ingest", schedule="0 2 * * *")],
                        )
                    )
                ]
            )

        Using in a route handler::

            @post("/ingest")
            async def ingest(pipeline_engine: ExecutionEngine) -> dict:
                run = await pipeline_engine.start_run("ingest", {"bucket": "raw"})
                return {"run_id": run.id, "status": run.status}
    """

    __slots__ = ("_config", "_engine", "_gateway", "_registry", "_serve_task")

    def __init__(self, config: PipelinePluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or PipelinePluginConfig()
        self._registry: WorkflowRegistry | None = None
        self._engine: ExecutionEngine | None = None
        self._gateway: TriggerGateway | None = None
        self._serve_task: asyncio.Task[None] | None = None

    @property
    def registry(self) -> WorkflowRegistry:
        """Get the workflow registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "PipelinePlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def engine(self) -> ExecutionEngine:
        """Get the execution engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "PipelinePlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    @property
    def gateway(self) -> TriggerGateway:
        """Get the trigger gateway.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._gateway is None:
            msg = "PipelinePlugin has not been initialized. Access gateway after app startup."
            raise RuntimeError(msg)
        return self._gateway

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided registry and engine
        2. Registers the configured workflows
        3. Creates the trigger gateway with the configured rules
        4. Adds dependency providers and lifespan hooks to the app config
        5. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        config = self._config
        self._registry = config.registry or (config.engine.registry if config.engine else WorkflowRegistry())
        self._engine = config.engine or ExecutionEngine(
            registry=self._registry,
            job_runner=config.job_runner or CallableJobRunner(),
            history=config.history,
            clock=config.clock,
            sink=config.sink,
            run_store=config.run_store,
            config=config.engine_config,
        )

        for workflow in config.workflows:
            self._registry.register(workflow)

        self._gateway = TriggerGateway(self._engine, config.triggers, config=config.gateway_config)

        def provide_registry() -> WorkflowRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_engine() -> ExecutionEngine:
            return self._engine  # type: ignore[return-value]

        def provide_gateway() -> TriggerGateway:
            return self._gateway  # type: ignore[return-value]

        def provide_definition_store() -> SQLAlchemyDefinitionStore | None:
            return config.definition_store

        app_config.dependencies[config.dependency_key_registry] = Provide(provide_registry, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_engine] = Provide(provide_engine, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_gateway] = Provide(provide_gateway, sync_to_thread=False)

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)

        if config.enable_api:
            from litestar import Router

            from litestar_pipelines.web.controllers import EventController, RunController, WorkflowController
            from litestar_pipelines.web.exceptions import EXCEPTION_HANDLERS

            app_config.dependencies["pipeline_definition_store"] = Provide(
                provide_definition_store,
                sync_to_thread=False,
            )

            pipeline_router = Router(
                path=config.api_path_prefix,
                route_handlers=[WorkflowController, RunController, EventController],
                guards=config.api_guards,
                tags=config.api_tags,
                include_in_schema=config.include_api_in_schema,
                exception_handlers=EXCEPTION_HANDLERS,
            )
            app_config.route_handlers.append(pipeline_router)

        return app_config

    async def _on_startup(self) -> None:
        if self._config.definition_store is not None:
            for document in await self._config.definition_store.load_active():
                self.registry.register(document)
        if self._config.recover_on_startup:
            recovered = await self.engine.recover()
            if recovered:
                logger.info("Recovered %d runs", len(recovered))
        if self._config.run_scheduler:
            self._serve_task = asyncio.create_task(self.engine.serve(), name="pipeline-scheduler")
            self.gateway.start()

    async def _on_shutdown(self) -> None:
        await self.gateway.stop()
        await self.engine.shutdown()
        if self._serve_task is not None:
            task, self._serve_task = self._serve_task, None
            with contextlib.suppress(asyncio.CancelledError):
                await task
