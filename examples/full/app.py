"""Full example demonstrating litestar-pipelines with persistence and triggers.

This example shows:
- SQLite persistence of history, runs and workflow documents
- Recovery of interrupted runs when the app restarts
- A Map state crawling every partition, with a tolerated failure
- A Parallel state publishing to two targets
- Catchers routing failures to a notification state
- A nightly schedule and an upload event trigger
- Built-in REST API endpoints (auto-enabled)

Run with:
    cd examples/full
    litestar run --port 8001

API Endpoints (auto-enabled):
    Workflows:
        GET  /pipelines/workflows                   - List workflows
        POST /pipelines/workflows                   - Register a workflow document
        GET  /pipelines/workflows/{name}            - Get workflow details
        GET  /pipelines/workflows/{name}/graph      - Get MermaidJS graph

    Runs:
        POST /pipelines/runs                        - Start a run
        GET  /pipelines/runs                        - List runs
        GET  /pipelines/runs/{id}                   - Get run details
        GET  /pipelines/runs/{id}/history           - Get the execution history
        GET  /pipelines/runs/{id}/graph             - Get run graph with state
        POST /pipelines/runs/{id}/cancel            - Cancel a run

    Events:
        POST /pipelines/events                      - Submit an event

Example API Usage:
    curl -X POST http://localhost:8001/pipelines/runs \\
        -H "Content-Type: application/json" \\
        -d '{"workflow": "partitioned-ingest", "input_data": {"partitions": [{"key": "2024-01"}, {"key": "2024-02"}]}}'

    curl http://localhost:8001/pipelines/workflows/partitioned-ingest/graph
"""

from __future__ import annotations

import logging
import random
from typing import Any

from litestar import Litestar, get
from litestar.openapi import OpenAPIConfig
from litestar.plugins.sqlalchemy import SQLAlchemyAsyncConfig, SQLAlchemyPlugin

from litestar_pipelines import (
    CallableJobRunner,
    EngineConfig,
    LoggingSink,
    PipelinePlugin,
    PipelinePluginConfig,
    StepExecutionError,
    TriggerRule,
)
from litestar_pipelines.db import (
    SQLAlchemyDefinitionStore,
    SQLAlchemyHistoryStore,
    SQLAlchemyRunStore,
    WorkflowDefinitionModel,
)

logging.basicConfig(level=logging.INFO)

# =============================================================================
# Jobs
# =============================================================================

runner = CallableJobRunner()


@runner.job("crawl_partition")
async def crawl_partition(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    """Crawl one partition. Occasionally reports the crawler as busy."""
    if random.random() < 0.2:  # noqa: S311
        raise StepExecutionError("CrawlPartition", "Crawler.Busy", "too many concurrent crawls")
    return {"partition": parameters["key"], "rows": random.randint(100, 1000)}  # noqa: S311


@runner.job("publish_warehouse")
def publish_warehouse(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    return {"target": "warehouse", "partitions": len(parameters["crawled"])}


@runner.job("publish_catalog")
def publish_catalog(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    return {"target": "catalog", "partitions": len(parameters["crawled"])}


@runner.job("notify")
def notify(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    logging.getLogger("examples.full").warning("Ingest failed: %s", parameters["error"])
    return {"notified": True}


# =============================================================================
# Workflow Definition
# =============================================================================

PARTITIONED_INGEST: dict[str, Any] = {
    "name": "partitioned-ingest",
    "version": "1.0.0",
    "comment": "Crawl every partition, then publish to the warehouse and the catalog",
    "start_at": "CrawlAll",
    "timeout_seconds": 6 * 3600,
    "states": {
        "CrawlAll": {
            "type": "Map",
            "items_path": "partitions",
            "max_concurrency": 4,
            "tolerated_failure_count": 1,
            "result_path": "crawled",
            "iterator": {
                "start_at": "CrawlPartition",
                "states": {
                    "CrawlPartition": {
                        "type": "Task",
                        "resource": "crawl_partition",
                        "parameters": {"key": "$.key"},
                        "timeout_seconds": 600,
                        "retry": {"error_equals": ["Crawler.Busy"], "max_attempts": 3, "interval_seconds": 5},
                        "end": True,
                    }
                },
            },
            "catch": [{"error_equals": ["*"], "next": "Notify"}],
            "next": "Publish",
        },
        "Publish": {
            "type": "Parallel",
            "result_path": "published",
            "branches": [
                {
                    "start_at": "Warehouse",
                    "states": {
                        "Warehouse": {
                            "type": "Task",
                            "resource": "publish_warehouse",
                            "parameters": {"crawled": "$.crawled"},
                            "end": True,
                        }
                    },
                },
                {
                    "start_at": "Catalog",
                    "states": {
                        "Catalog": {
                            "type": "Task",
                            "resource": "publish_catalog",
                            "parameters": {"crawled": "$.crawled"},
                            "end": True,
                        }
                    },
                },
            ],
            "catch": [{"error_equals": ["*"], "next": "Notify"}],
            "next": "Done",
        },
        "Notify": {"type": "Task", "resource": "notify", "parameters": {"error": "$.error"}, "next": "Failed"},
        "Failed": {"type": "Fail", "error": "Ingest.Failed", "cause": "see the Notify step"},
        "Done": {"type": "Succeed"},
    },
}


# =============================================================================
# Application Setup
# =============================================================================

# Database configuration - SQLite for simplicity
# In production, use PostgreSQL or another production database
sqlalchemy_config = SQLAlchemyAsyncConfig(
    connection_string="sqlite+aiosqlite:///./pipelines.db",
    metadata=WorkflowDefinitionModel.metadata,
    create_all=True,  # Auto-create tables on startup
)
session_maker = sqlalchemy_config.create_session_maker()

pipeline_config = PipelinePluginConfig(
    job_runner=runner,
    history=SQLAlchemyHistoryStore(session_maker),
    run_store=SQLAlchemyRunStore(session_maker),
    definition_store=SQLAlchemyDefinitionStore(session_maker),
    sink=LoggingSink(),
    engine_config=EngineConfig(default_task_timeout=900, default_max_concurrency=8),
    workflows=[PARTITIONED_INGEST],
    triggers=[
        TriggerRule(
            name="nightly",
            workflow="partitioned-ingest",
            schedule="0 2 * * *",
            input={"partitions": [{"key": "daily"}]},
        ),
        TriggerRule(
            name="on-manifest",
            workflow="partitioned-ingest",
            event_pattern={"source": "storage", "detail.key": {"prefix": "manifests/"}},
            input={"partitions": [{"key": "manifest"}]},
        ),
    ],
)


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "litestar-pipelines-example"}


# SQLAlchemyPlugin comes first so the tables exist before runs are recovered
app = Litestar(
    route_handlers=[health_check],
    plugins=[
        SQLAlchemyPlugin(config=sqlalchemy_config),
        PipelinePlugin(config=pipeline_config),
    ],
    openapi_config=OpenAPIConfig(
        title="Litestar Pipelines - Full Example",
        version="1.0.0",
        description="Durable data pipelines with persistence, fan-out and triggers.",
    ),
    debug=True,
)
