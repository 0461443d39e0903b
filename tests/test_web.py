"""Tests for the pipelines REST API.

This module tests the controllers mounted by the plugin:
- Workflow endpoints (register, list, get, graph)
- Run endpoints (start, list, get, history, graph, cancel)
- Event endpoint
- Mapping of library errors onto HTTP responses
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest
from litestar import Litestar
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_202_ACCEPTED,
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)
from litestar.testing import AsyncTestClient

from litestar_pipelines import (
    CallableJobRunner,
    EngineConfig,
    ManualClock,
    PipelinePlugin,
    PipelinePluginConfig,
    TriggerRule,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

PREFIX = "/pipelines"


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def runner() -> CallableJobRunner:
    """Job runner with a crawler and a status check that never becomes ready."""
    runner = CallableJobRunner()

    @runner.job("crawler")
    def crawler(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        return {"files": 3, "crawled": parameters.get("bucket")}

    @runner.job("check_status")
    def check_status(parameters: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        return {"status": "PENDING"}

    return runner


@pytest.fixture
def plugin_config(
    runner: CallableJobRunner,
    linear_document: dict[str, Any],
    polling_document: dict[str, Any],
) -> PipelinePluginConfig:
    return PipelinePluginConfig(
        job_runner=runner,
        clock=ManualClock(),
        engine_config=EngineConfig(default_task_timeout=5.0),
        workflows=[linear_document, polling_document],
        triggers=[
            TriggerRule(
                name="on-upload",
                workflow="ingest",
                event_pattern={"source": "storage", "detail.key": {"prefix": "raw/"}},
                input={"bucket": "raw"},
            )
        ],
        run_scheduler=False,
    )


@pytest.fixture
async def client(plugin_config: PipelinePluginConfig) -> AsyncIterator[AsyncTestClient]:
    app = Litestar(plugins=[PipelinePlugin(config=plugin_config)])
    async with AsyncTestClient(app=app) as client:
        yield client


async def poll_run(client: AsyncTestClient, run_id: str, **expected: Any) -> dict[str, Any]:
    """Poll ``GET /runs/{run_id}`` until every expected field matches."""
    body: dict[str, Any] = {}
    for _ in range(500):
        response = await client.get(f"{PREFIX}/runs/{run_id}")
        if response.status_code == HTTP_200_OK:
            body = response.json()
            if all(body.get(key) == value for key, value in expected.items()):
                return body
        await asyncio.sleep(0.01)
    msg = f"Run {run_id} never reached {expected}, last seen {body}"
    raise AssertionError(msg)


# =============================================================================
# Workflow Endpoint Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestWorkflowEndpoints:
    """Tests for /workflows."""

    async def test_list_workflows(self, client: AsyncTestClient) -> None:
        """Test every configured workflow is listed."""
        response = await client.get(f"{PREFIX}/workflows")

        assert response.status_code == HTTP_200_OK
        assert sorted(item["name"] for item in response.json()) == ["ingest", "poll-crawler"]

    async def test_get_workflow(self, client: AsyncTestClient) -> None:
        """Test a workflow is returned with its state summary."""
        response = await client.get(f"{PREFIX}/workflows/ingest")

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["version"] == "1.0.0"
        assert body["start_at"] == "Crawl"
        assert body["states"]["Crawl"] == {"type": "Task", "transitions": ["Done"], "terminal": False}
        assert body["versions"] == ["1.0.0"]

    async def test_get_unknown_workflow(self, client: AsyncTestClient) -> None:
        """Test an unknown workflow name returns 404."""
        response = await client.get(f"{PREFIX}/workflows/missing")

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error"] == "not_found"

    async def test_register_workflow(self, client: AsyncTestClient, linear_document: dict[str, Any]) -> None:
        """Test posting a new version registers it next to the old one."""
        document = {**linear_document, "version": "2.0.0"}

        response = await client.post(f"{PREFIX}/workflows", json=document)

        assert response.status_code == HTTP_201_CREATED
        assert response.json()["versions"] == ["1.0.0", "2.0.0"]

        latest = await client.get(f"{PREFIX}/workflows/ingest")
        pinned = await client.get(f"{PREFIX}/workflows/ingest", params={"version": "1.0.0"})
        assert latest.json()["version"] == "2.0.0"
        assert pinned.json()["version"] == "1.0.0"

    async def test_register_invalid_workflow(self, client: AsyncTestClient) -> None:
        """Test validation problems are returned as a 400 and nothing is registered."""
        document = {
            "name": "broken",
            "start_at": "Crawl",
            "states": {"Crawl": {"type": "Task", "resource": "crawler", "next": "Nowhere"}},
        }

        response = await client.post(f"{PREFIX}/workflows", json=document)

        assert response.status_code == HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error"] == "invalid_workflow"
        assert body["kind"] == "UnknownStateReferenceError"
        assert any("Nowhere" in message for message in body["errors"])
        assert (await client.get(f"{PREFIX}/workflows/broken")).status_code == HTTP_404_NOT_FOUND

    async def test_workflow_graph(self, client: AsyncTestClient) -> None:
        """Test the graph endpoint returns Mermaid source, nodes and edges."""
        response = await client.get(f"{PREFIX}/workflows/poll-crawler/graph")

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["mermaid_source"].startswith("graph TD")
        assert {node["id"] for node in body["nodes"]} == {"Start", "Check", "Wait30", "Done"}
        assert {"source": "Check", "target": "Wait30", "condition": "default"} in body["edges"]

    async def test_workflow_graph_json_only(self, client: AsyncTestClient) -> None:
        """Test the json format skips the Mermaid source."""
        response = await client.get(f"{PREFIX}/workflows/ingest/graph", params={"graph_format": "json"})

        assert response.status_code == HTTP_200_OK
        assert response.json()["mermaid_source"] == ""

    async def test_workflow_graph_unknown_format(self, client: AsyncTestClient) -> None:
        """Test an unknown graph format returns 404."""
        response = await client.get(f"{PREFIX}/workflows/ingest/graph", params={"graph_format": "svg"})

        assert response.status_code == HTTP_404_NOT_FOUND


# =============================================================================
# Run Endpoint Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestRunEndpoints:
    """Tests for /runs."""

    async def test_start_and_complete_run(self, client: AsyncTestClient) -> None:
        """Test a started run reaches SUCCEEDED with the job output merged."""
        response = await client.post(f"{PREFIX}/runs", json={"workflow": "ingest", "input_data": {"bucket": "raw"}})

        assert response.status_code == HTTP_201_CREATED
        started = response.json()
        assert started["workflow_name"] == "ingest"
        assert started["workflow_version"] == "1.0.0"

        body = await poll_run(client, started["id"], status="SUCCEEDED")

        assert body["context"] == {"bucket": "raw", "files": 3, "crawled": "raw"}
        assert body["completed_at"] is not None

    async def test_start_is_idempotent_on_run_id(self, client: AsyncTestClient) -> None:
        """Test starting twice with the same run id returns the same run."""
        payload = {"workflow": "ingest", "input_data": {"bucket": "raw"}, "run_id": "nightly-2024-01-01"}

        first = await client.post(f"{PREFIX}/runs", json=payload)
        second = await client.post(f"{PREFIX}/runs", json=payload)
        runs = await client.get(f"{PREFIX}/runs")

        assert first.json()["id"] == second.json()["id"] == "nightly-2024-01-01"
        assert [run["id"] for run in runs.json()] == ["nightly-2024-01-01"]

    async def test_start_unknown_workflow(self, client: AsyncTestClient) -> None:
        """Test starting an unregistered workflow returns 404."""
        response = await client.post(f"{PREFIX}/runs", json={"workflow": "missing"})

        assert response.status_code == HTTP_404_NOT_FOUND

    async def test_list_runs_with_filters(self, client: AsyncTestClient) -> None:
        """Test runs can be filtered by workflow and status."""
        done = (await client.post(f"{PREFIX}/runs", json={"workflow": "ingest"})).json()
        waiting = (await client.post(f"{PREFIX}/runs", json={"workflow": "poll-crawler"})).json()
        await poll_run(client, done["id"], status="SUCCEEDED")
        await poll_run(client, waiting["id"], current_state="Wait30")

        by_workflow = await client.get(f"{PREFIX}/runs", params={"workflow_name": "poll-crawler"})
        by_status = await client.get(f"{PREFIX}/runs", params={"status": "SUCCEEDED"})
        paged = await client.get(f"{PREFIX}/runs", params={"limit": 1, "offset": 1})

        assert [run["id"] for run in by_workflow.json()] == [waiting["id"]]
        assert [run["id"] for run in by_status.json()] == [done["id"]]
        assert [run["id"] for run in paged.json()] == [waiting["id"]]

    async def test_list_runs_unknown_status(self, client: AsyncTestClient) -> None:
        """Test an unknown status filter is rejected."""
        response = await client.get(f"{PREFIX}/runs", params={"status": "PAUSED"})

        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_get_unknown_run(self, client: AsyncTestClient) -> None:
        """Test unknown run ids return 404 on every run endpoint."""
        for path in ("", "/history", "/graph"):
            response = await client.get(f"{PREFIX}/runs/missing{path}")
            assert response.status_code == HTTP_404_NOT_FOUND

    async def test_run_history(self, client: AsyncTestClient) -> None:
        """Test the history endpoint returns ordered entries."""
        run = (await client.post(f"{PREFIX}/runs", json={"workflow": "ingest"})).json()
        await poll_run(client, run["id"], status="SUCCEEDED")

        response = await client.get(f"{PREFIX}/runs/{run['id']}/history")

        assert response.status_code == HTTP_200_OK
        entries = response.json()
        assert entries[0]["event"] == "RunStarted"
        assert entries[-1]["event"] == "RunSucceeded"
        assert [entry["sequence"] for entry in entries] == list(range(1, len(entries) + 1))
        assert {"StepSucceeded", "StateEntered"} <= {entry["event"] for entry in entries}

    async def test_run_graph_highlights_progress(self, client: AsyncTestClient) -> None:
        """Test the run graph marks finished states and the current one."""
        run = (await client.post(f"{PREFIX}/runs", json={"workflow": "poll-crawler"})).json()
        await poll_run(client, run["id"], current_state="Wait30")

        response = await client.get(f"{PREFIX}/runs/{run['id']}/graph")

        assert response.status_code == HTTP_200_OK
        mermaid = response.json()["mermaid_source"]
        assert "style Start fill:#90EE90" in mermaid
        assert "style Wait30 fill:#FFD700" in mermaid

    async def test_cancel_waiting_run(self, client: AsyncTestClient) -> None:
        """Test a run suspended on a Wait state is cancelled immediately."""
        run = (await client.post(f"{PREFIX}/runs", json={"workflow": "poll-crawler"})).json()
        await poll_run(client, run["id"], current_state="Wait30")

        response = await client.post(f"{PREFIX}/runs/{run['id']}/cancel", json={"reason": "operator"})

        assert response.status_code == HTTP_200_OK
        assert response.json()["status"] == "CANCELLED"
        assert "operator" in response.json()["cause"]

    async def test_cancel_finished_run(self, client: AsyncTestClient) -> None:
        """Test cancelling a finished run returns 409 with its status."""
        run = (await client.post(f"{PREFIX}/runs", json={"workflow": "ingest"})).json()
        await poll_run(client, run["id"], status="SUCCEEDED")

        response = await client.post(f"{PREFIX}/runs/{run['id']}/cancel")

        assert response.status_code == HTTP_409_CONFLICT
        assert response.json() == {
            "error": "run_terminal",
            "message": f"Run '{run['id']}' is already SUCCEEDED",
            "status": "SUCCEEDED",
        }

    async def test_cancel_unknown_run(self, client: AsyncTestClient) -> None:
        """Test cancelling an unknown run returns 404."""
        response = await client.post(f"{PREFIX}/runs/missing/cancel")

        assert response.status_code == HTTP_404_NOT_FOUND


# =============================================================================
# Event Endpoint Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestEventEndpoints:
    """Tests for /events."""

    async def test_matching_event_is_accepted(self, client: AsyncTestClient) -> None:
        """Test a matching event is queued and run ids are allocated."""
        response = await client.post(
            f"{PREFIX}/events",
            json={"id": "evt-1", "source": "storage", "detail": {"key": "raw/a.csv"}},
        )

        assert response.status_code == HTTP_202_ACCEPTED
        body = response.json()
        assert body["event_id"] == "evt-1"
        assert len(body["run_ids"]) == 1

    async def test_redelivered_event_is_ignored(self, client: AsyncTestClient) -> None:
        """Test the same event id does not allocate a second run."""
        event = {"id": "evt-1", "source": "storage", "detail": {"key": "raw/a.csv"}}

        await client.post(f"{PREFIX}/events", json=event)
        response = await client.post(f"{PREFIX}/events", json=event)

        assert response.status_code == HTTP_202_ACCEPTED
        assert response.json()["run_ids"] == []

    async def test_non_matching_event(self, client: AsyncTestClient) -> None:
        """Test an event matching no rule is accepted without runs."""
        response = await client.post(f"{PREFIX}/events", json={"id": "evt-2", "source": "queue"})

        assert response.status_code == HTTP_202_ACCEPTED
        assert response.json()["run_ids"] == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestEventsWithScheduler:
    """Tests for the event endpoint with the background gateway running."""

    @pytest.fixture
    def plugin_config(self, plugin_config: PipelinePluginConfig) -> PipelinePluginConfig:
        plugin_config.run_scheduler = True
        return plugin_config

    async def test_event_starts_run(self, client: AsyncTestClient) -> None:
        """Test the gateway worker starts the run allocated for an event."""
        response = await client.post(
            f"{PREFIX}/events",
            json={"id": "evt-1", "source": "storage", "detail": {"key": "raw/a.csv"}},
        )
        [run_id] = response.json()["run_ids"]

        body = await poll_run(client, run_id, status="SUCCEEDED")

        assert body["workflow_name"] == "ingest"
        assert body["context"]["crawled"] == "raw"
        assert body["context"]["event"]["id"] == "evt-1"
