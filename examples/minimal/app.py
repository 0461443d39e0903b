"""Minimal example of litestar-pipelines integration.

This example demonstrates the basic usage of the PipelinePlugin with a
polling workflow: start a crawl, check its status every 30 seconds until it
is ready, then publish the result. Uploads under ``raw/`` start the workflow
through an event trigger.

Run with:
    cd examples/minimal
    litestar run

Try it:
    curl -X POST http://localhost:8000/pipelines/runs \\
        -H "Content-Type: application/json" \\
        -d '{"workflow": "crawl-and-publish", "input_data": {"bucket": "raw"}}'

    curl -X POST http://localhost:8000/pipelines/events \\
        -H "Content-Type: application/json" \\
        -d '{"id": "evt-1", "source": "storage", "detail": {"key": "raw/2024/01/a.csv"}}'
"""

from __future__ import annotations

import itertools
from typing import Any

from litestar import Litestar, get

from litestar_pipelines import (
    CallableJobRunner,
    ExecutionEngine,
    PipelinePlugin,
    PipelinePluginConfig,
    TriggerRule,
)

# =============================================================================
# Jobs
# =============================================================================

runner = CallableJobRunner()
_polls = itertools.count()


@runner.job("start_crawler")
async def start_crawler(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    """Kick off a crawl of the bucket."""
    return {"crawl_id": f"crawl-{parameters['bucket']}"}


@runner.job("crawler_status")
async def crawler_status(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    """Report READY on every third poll."""
    return {"status": "READY" if next(_polls) % 3 == 2 else "RUNNING"}


@runner.job("publish")
def publish(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    return {"published": parameters["crawl_id"]}


# =============================================================================
# Workflow Definition
# =============================================================================

CRAWL_AND_PUBLISH: dict[str, Any] = {
    "name": "crawl-and-publish",
    "version": "1.0.0",
    "comment": "Crawl a bucket, wait for the crawler, publish the result",
    "start_at": "StartCrawler",
    "timeout_seconds": 3600,
    "states": {
        "StartCrawler": {
            "type": "Task",
            "resource": "start_crawler",
            "parameters": {"bucket": "$.bucket"},
            "retry": {"error_equals": ["Crawler.*"], "max_attempts": 2},
            "next": "CheckStatus",
        },
        "CheckStatus": {"type": "Task", "resource": "crawler_status", "next": "IsReady"},
        "IsReady": {
            "type": "Choice",
            "choices": [{"variable": "status", "equals": "READY", "next": "Publish"}],
            "default": "Wait30",
        },
        "Wait30": {"type": "Wait", "seconds": 30, "next": "CheckStatus"},
        "Publish": {
            "type": "Task",
            "resource": "publish",
            "parameters": {"crawl_id": "$.crawl_id"},
            "end": True,
        },
    },
}


# =============================================================================
# Application
# =============================================================================

plugin_config = PipelinePluginConfig(
    job_runner=runner,
    workflows=[CRAWL_AND_PUBLISH],
    triggers=[
        TriggerRule(
            name="on-raw-upload",
            workflow="crawl-and-publish",
            event_pattern={"source": "storage", "detail.key": {"prefix": "raw/"}},
            input={"bucket": "raw"},
        )
    ],
)


@get("/health")
async def health_check(pipeline_engine: ExecutionEngine) -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "healthy", "runs": len(pipeline_engine.list_runs())}


app = Litestar(
    route_handlers=[health_check],
    plugins=[PipelinePlugin(config=plugin_config)],
    debug=True,
)
