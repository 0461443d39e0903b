"""Tests for in-memory history and run stores."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from litestar_pipelines.core.models import HistoryEntry, Outcome, Run
from litestar_pipelines.core.types import HistoryEventType, RunStatus
from litestar_pipelines.engine.registry import WorkflowRegistry
from litestar_pipelines.exceptions import PersistenceError
from litestar_pipelines.history import HistoryStore, InMemoryHistoryStore, InMemoryRunStore, RunStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def entry(run_id: str, sequence: int, event: HistoryEventType = HistoryEventType.STATE_ENTERED) -> HistoryEntry:
    return HistoryEntry(run_id=run_id, sequence=sequence, state_id="Crawl", event=event, timestamp=T0)


@pytest.fixture
def run(linear_document: dict[str, Any]) -> Run:
    graph = WorkflowRegistry().register(linear_document)
    return Run(id="run-1", graph=graph, current_state="Crawl", context={"bucket": "raw"}, started_at=T0)


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryHistoryStore:
    """Tests for InMemoryHistoryStore."""

    async def test_satisfies_protocol(self) -> None:
        """Test the store is a HistoryStore."""
        assert isinstance(InMemoryHistoryStore(), HistoryStore)

    async def test_append_and_query(self) -> None:
        """Test entries are partitioned by run and kept in append order."""
        store = InMemoryHistoryStore()
        await store.append(entry("run-1", 1))
        await store.append(entry("run-2", 1))
        await store.append(entry("run-1", 2, HistoryEventType.RUN_SUCCEEDED))

        entries = await store.query("run-1").to_list()

        assert [e.sequence for e in entries] == [1, 2]
        assert sorted(store.run_ids()) == ["run-1", "run-2"]
        assert await store.query("unknown").to_list() == []

    async def test_cursor_is_lazy_and_restartable(self) -> None:
        """Test a cursor sees entries appended after it was created."""
        store = InMemoryHistoryStore()
        cursor = store.query("run-1")
        await store.append(entry("run-1", 1))

        first = [e.sequence async for e in cursor]
        await store.append(entry("run-1", 2))
        second = [e.sequence async for e in cursor]

        assert first == [1]
        assert second == [1, 2]

    async def test_unavailable_store_raises(self) -> None:
        """Test an unavailable store raises PersistenceError."""
        store = InMemoryHistoryStore()
        store.available = False

        with pytest.raises(PersistenceError, match="unavailable"):
            await store.append(entry("run-1", 1))

    async def test_clear(self) -> None:
        """Test clear drops everything."""
        store = InMemoryHistoryStore()
        await store.append(entry("run-1", 1))
        store.clear()

        assert store.run_ids() == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryRunStore:
    """Tests for InMemoryRunStore."""

    async def test_satisfies_protocol(self) -> None:
        """Test the store is a RunStore."""
        assert isinstance(InMemoryRunStore(), RunStore)

    async def test_save_and_load(self, run: Run) -> None:
        """Test saved records are snapshots of Run.to_dict."""
        store = InMemoryRunStore()
        await store.save(run)
        run.context["bucket"] = "changed"

        record = await store.load("run-1")

        assert record is not None
        assert record["workflow_name"] == "ingest"
        assert record["context"] == {"bucket": "raw"}
        assert await store.load("missing") is None

    async def test_list_records_by_status(self, run: Run) -> None:
        """Test list_records filters on the serialized status."""
        store = InMemoryRunStore()
        await store.save(run)

        assert len(await store.list_records()) == 1
        assert len(await store.list_records(status="RUNNING")) == 1
        assert await store.list_records(status="FAILED") == []

    async def test_unavailable_store_raises(self, run: Run) -> None:
        """Test an unavailable store raises PersistenceError."""
        store = InMemoryRunStore()
        store.available = False

        with pytest.raises(PersistenceError):
            await store.save(run)


@pytest.mark.unit
class TestRunSerialization:
    """Tests for Run.to_dict / Run.from_dict and the other models."""

    def test_round_trip(self, run: Run) -> None:
        """Test a run survives serialization with its continuation intact."""
        run.status = RunStatus.FAILED
        run.attempts = {"Crawl": 2}
        run.error = "Crawler.Busy"
        run.completed_at = T0
        run.sequence = 7

        restored = Run.from_dict(run.to_dict(), run.graph)

        assert restored == run
        assert restored.is_terminal
        assert restored.next_sequence() == 8

    def test_history_entry_to_dict(self) -> None:
        """Test history entries serialize their outcome and event name."""
        record = HistoryEntry(
            run_id="run-1",
            sequence=3,
            state_id="Crawl",
            event=HistoryEventType.STEP_FAILED,
            timestamp=T0,
            attempt=1,
            outcome=Outcome.failure("Crawler.Busy", "queue full"),
        ).to_dict()

        assert record["event"] == "StepFailed"
        assert record["timestamp"] == "2024-01-01T00:00:00+00:00"
        assert record["outcome"] == {"success": False, "payload": None, "error": "Crawler.Busy", "cause": "queue full"}
        assert Outcome.from_dict(record["outcome"]) == Outcome.failure("Crawler.Busy", "queue full")

    def test_sort_key(self) -> None:
        """Test entries order by timestamp, then sequence."""
        entries = [entry("run-1", 3), entry("run-1", 1), entry("run-1", 2)]

        assert [e.sequence for e in sorted(entries, key=lambda e: e.sort_key)] == [1, 2, 3]
