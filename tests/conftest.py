"""Shared test fixtures for litestar-pipelines test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from litestar_pipelines.engine.clock import ManualClock
    from litestar_pipelines.engine.local import ExecutionEngine
    from litestar_pipelines.engine.registry import WorkflowRegistry
    from litestar_pipelines.history import InMemoryHistoryStore, InMemoryRunStore
    from litestar_pipelines.observability import RecordingSink
    from litestar_pipelines.runners import CallableJobRunner

Driver = Callable[..., Awaitable[None]]


@pytest.fixture
def clock() -> ManualClock:
    """Simulated clock starting at 2024-01-01 00:00 UTC."""
    from litestar_pipelines.engine.clock import ManualClock

    return ManualClock()


@pytest.fixture
def workflow_registry() -> WorkflowRegistry:
    """Create an empty workflow registry."""
    from litestar_pipelines.engine.registry import WorkflowRegistry

    return WorkflowRegistry()


@pytest.fixture
def job_runner() -> CallableJobRunner:
    """Create a job runner without any registered jobs."""
    from litestar_pipelines.runners import CallableJobRunner

    return CallableJobRunner()


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    """Create an in-memory history store."""
    from litestar_pipelines.history import InMemoryHistoryStore

    return InMemoryHistoryStore()


@pytest.fixture
def run_store() -> InMemoryRunStore:
    """Create an in-memory run store."""
    from litestar_pipelines.history import InMemoryRunStore

    return InMemoryRunStore()


@pytest.fixture
def sink() -> RecordingSink:
    """Create a sink recording every engine event."""
    from litestar_pipelines.observability import RecordingSink

    return RecordingSink()


@pytest.fixture
def engine(
    workflow_registry: WorkflowRegistry,
    job_runner: CallableJobRunner,
    history_store: InMemoryHistoryStore,
    run_store: InMemoryRunStore,
    clock: ManualClock,
    sink: RecordingSink,
) -> ExecutionEngine:
    """Create an execution engine wired to the in-memory fixtures.

    Args:
        workflow_registry: Workflow registry fixture
        job_runner: Job runner fixture
        history_store: History store fixture
        run_store: Run store fixture
        clock: Manual clock fixture
        sink: Recording sink fixture

    Returns:
        ExecutionEngine instance
    """
    from litestar_pipelines.config import EngineConfig
    from litestar_pipelines.engine.local import ExecutionEngine

    return ExecutionEngine(
        registry=workflow_registry,
        job_runner=job_runner,
        history=history_store,
        clock=clock,
        sink=sink,
        run_store=run_store,
        config=EngineConfig(default_task_timeout=5.0),
    )


@pytest.fixture
def drive(engine: ExecutionEngine, clock: ManualClock) -> Driver:
    """Advance the manual clock from one due wake or deadline to the next.

    The returned coroutine function settles the engine, then repeatedly jumps
    the clock to the scheduler's next due time and ticks, until nothing is
    scheduled any more.

    Returns:
        Async callable accepting an optional ``max_ticks`` bound
    """

    async def _drive(max_ticks: int = 1000) -> None:
        await engine.wait_idle()
        for _ in range(max_ticks):
            due = engine.scheduler.next_due()
            if due is None:
                return
            clock.advance_to(max(due, clock.now()))
            await engine.tick()
            await engine.wait_idle()
        msg = f"Runs still scheduled after {max_ticks} ticks"
        raise AssertionError(msg)

    return _drive


@pytest.fixture
def linear_document() -> dict[str, Any]:
    """A two-state workflow: one Task followed by a Succeed state."""
    return {
        "name": "ingest",
        "version": "1.0.0",
        "comment": "Crawl a bucket",
        "start_at": "Crawl",
        "states": {
            "Crawl": {
                "type": "Task",
                "resource": "crawler",
                "parameters": {"bucket": "$.bucket"},
                "next": "Done",
            },
            "Done": {"type": "Succeed"},
        },
    }


@pytest.fixture
def polling_document() -> dict[str, Any]:
    """A polling loop guarded by a Choice with an exit and a 30 second Wait."""
    return {
        "name": "poll-crawler",
        "start_at": "Start",
        "states": {
            "Start": {"type": "Task", "resource": "check_status", "next": "Check"},
            "Check": {
                "type": "Choice",
                "choices": [{"variable": "status", "equals": "READY", "next": "Done"}],
                "default": "Wait30",
            },
            "Wait30": {"type": "Wait", "seconds": 30, "next": "Start"},
            "Done": {"type": "Succeed"},
        },
    }


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite in-memory engine with every pipeline table."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    from litestar_pipelines.db.models import WorkflowDefinitionModel

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(WorkflowDefinitionModel.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test database."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "e2e: End-to-end tests")
    config.addinivalue_line("markers", "slow: Tests that take more than 1 second")
