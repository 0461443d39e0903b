"""Tests for the PipelinePlugin integration with Litestar.

These tests verify that the plugin correctly integrates with Litestar
applications and provides dependency injection for pipeline components.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest
from litestar import Litestar, get, post
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED, HTTP_404_NOT_FOUND
from litestar.testing import AsyncTestClient, TestClient

from litestar_pipelines import (
    CallableJobRunner,
    ExecutionEngine,
    InMemoryRunStore,
    ManualClock,
    PipelinePlugin,
    PipelinePluginConfig,
    Run,
    RunStatus,
    TriggerGateway,
    WorkflowRegistry,
)
from litestar_pipelines.db import SQLAlchemyDefinitionStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@pytest.fixture
def runner() -> CallableJobRunner:
    runner = CallableJobRunner()
    runner.register("crawler", lambda parameters, context: {"files": 3})
    return runner


# =============================================================================
# Plugin Configuration Tests
# =============================================================================


@pytest.mark.unit
class TestPluginConfiguration:
    """Tests for plugin initialization and configuration."""

    def test_plugin_creates_default_components(self) -> None:
        """Test plugin creates a registry, an engine and a gateway when none are provided."""
        plugin = PipelinePlugin()
        Litestar(plugins=[plugin])

        assert isinstance(plugin.registry, WorkflowRegistry)
        assert isinstance(plugin.engine, ExecutionEngine)
        assert isinstance(plugin.gateway, TriggerGateway)
        assert plugin.engine.registry is plugin.registry

    def test_plugin_uses_provided_registry(self) -> None:
        """Test plugin uses a provided registry for the engine it builds."""
        registry = WorkflowRegistry()
        plugin = PipelinePlugin(config=PipelinePluginConfig(registry=registry))
        Litestar(plugins=[plugin])

        assert plugin.registry is registry
        assert plugin.engine.registry is registry

    def test_plugin_uses_provided_engine(self, runner: CallableJobRunner) -> None:
        """Test plugin uses a provided engine and its registry."""
        engine = ExecutionEngine(WorkflowRegistry(), runner)
        plugin = PipelinePlugin(config=PipelinePluginConfig(engine=engine))
        Litestar(plugins=[plugin])

        assert plugin.engine is engine
        assert plugin.registry is engine.registry

    def test_plugin_auto_registers_workflows(self, linear_document: dict[str, Any]) -> None:
        """Test workflows in the config are registered on init."""
        plugin = PipelinePlugin(config=PipelinePluginConfig(workflows=[linear_document]))
        Litestar(plugins=[plugin])

        assert plugin.registry.has_workflow("ingest")

    @pytest.mark.parametrize("attribute", ["registry", "engine", "gateway"])
    def test_property_before_init_raises(self, attribute: str) -> None:
        """Test accessing components before app init raises RuntimeError."""
        plugin = PipelinePlugin()

        with pytest.raises(RuntimeError, match="not been initialized"):
            getattr(plugin, attribute)

    def test_api_can_be_disabled(self) -> None:
        """Test no pipeline routes are mounted with enable_api=False."""
        plugin = PipelinePlugin(config=PipelinePluginConfig(enable_api=False, run_scheduler=False))

        with TestClient(app=Litestar(plugins=[plugin])) as client:
            assert client.get("/pipelines/workflows").status_code == HTTP_404_NOT_FOUND

    def test_custom_api_prefix(self, linear_document: dict[str, Any]) -> None:
        """Test the API is mounted under the configured prefix."""
        plugin = PipelinePlugin(
            config=PipelinePluginConfig(
                workflows=[linear_document],
                api_path_prefix="/api/v1/pipelines",
                run_scheduler=False,
            )
        )

        with TestClient(app=Litestar(plugins=[plugin])) as client:
            assert client.get("/api/v1/pipelines/workflows/ingest").status_code == HTTP_200_OK
            assert client.get("/pipelines/workflows/ingest").status_code == HTTP_404_NOT_FOUND


# =============================================================================
# Dependency Injection Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestDependencyInjection:
    """Tests for dependency injection of pipeline components."""

    async def test_engine_injection(self, runner: CallableJobRunner, linear_document: dict[str, Any]) -> None:
        """Test route handlers can start runs through the injected engine."""

        @post("/ingest")
        async def ingest(pipeline_engine: ExecutionEngine) -> dict[str, Any]:
            run = await pipeline_engine.start_run("ingest", {"bucket": "raw"})
            run = await pipeline_engine.wait_done(run.id, timeout=5)
            return {"run_id": run.id, "status": str(run.status), "files": run.context["files"]}

        plugin = PipelinePlugin(
            config=PipelinePluginConfig(job_runner=runner, workflows=[linear_document], run_scheduler=False)
        )
        app = Litestar(route_handlers=[ingest], plugins=[plugin])

        async with AsyncTestClient(app=app) as client:
            response = await client.post("/ingest")

        assert response.status_code == HTTP_201_CREATED
        assert response.json()["status"] == "SUCCEEDED"
        assert response.json()["files"] == 3

    async def test_custom_dependency_keys(self, linear_document: dict[str, Any]) -> None:
        """Test the injection keys can be renamed."""

        @get("/names")
        async def names(registry: WorkflowRegistry, gateway: TriggerGateway) -> list[str]:
            return [graph.name for graph in registry.list_graphs()] + [str(len(gateway.rules))]

        plugin = PipelinePlugin(
            config=PipelinePluginConfig(
                workflows=[linear_document],
                dependency_key_registry="registry",
                dependency_key_gateway="gateway",
                enable_api=False,
                run_scheduler=False,
            )
        )
        app = Litestar(route_handlers=[names], plugins=[plugin])

        async with AsyncTestClient(app=app) as client:
            response = await client.get("/names")

        assert response.json() == ["ingest", "0"]


# =============================================================================
# Lifespan Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestLifespan:
    """Tests for startup recovery and the background scheduler."""

    async def test_recovers_runs_on_startup(
        self,
        runner: CallableJobRunner,
        linear_document: dict[str, Any],
    ) -> None:
        """Test RUNNING runs in the run store are resumed when the app starts."""
        registry = WorkflowRegistry()
        graph = registry.register(linear_document)
        run_store = InMemoryRunStore()
        clock = ManualClock()

        await run_store.save(
            Run(
                id="run-1",
                graph=graph,
                current_state="Crawl",
                context={"bucket": "raw"},
                state_input={"bucket": "raw"},
                started_at=clock.now(),
            )
        )
        plugin = PipelinePlugin(
            config=PipelinePluginConfig(
                registry=registry,
                job_runner=runner,
                run_store=run_store,
                clock=clock,
                run_scheduler=False,
            )
        )

        async with AsyncTestClient(app=Litestar(plugins=[plugin])) as client:
            for _ in range(500):
                body = (await client.get("/pipelines/runs/run-1")).json()
                if body.get("status") == str(RunStatus.SUCCEEDED):
                    break
                await asyncio.sleep(0.01)

        assert body["status"] == "SUCCEEDED"
        assert body["context"]["files"] == 3

    async def test_definition_store_round_trip(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        linear_document: dict[str, Any],
    ) -> None:
        """Test posted workflows are saved and reloaded by the next app."""
        store = SQLAlchemyDefinitionStore(session_maker)

        first = PipelinePlugin(config=PipelinePluginConfig(definition_store=store, run_scheduler=False))
        async with AsyncTestClient(app=Litestar(plugins=[first])) as client:
            response = await client.post("/pipelines/workflows", json=linear_document)
            assert response.status_code == HTTP_201_CREATED

        second = PipelinePlugin(config=PipelinePluginConfig(definition_store=store, run_scheduler=False))
        async with AsyncTestClient(app=Litestar(plugins=[second])):
            assert second.registry.has_workflow("ingest", "1.0.0")

    async def test_scheduler_runs_while_app_is_up(self) -> None:
        """Test the serve loop is started on startup and stopped on shutdown."""
        plugin = PipelinePlugin(config=PipelinePluginConfig(recover_on_startup=False))

        async with AsyncTestClient(app=Litestar(plugins=[plugin])):
            assert plugin._serve_task is not None
            assert not plugin._serve_task.done()

        assert plugin._serve_task is None
