"""SQLAlchemy backed history, run and definition stores.

The stores open a short session per call from an ``async_sessionmaker`` so they
can be shared by every run the engine drives. Database errors are re-raised as
:class:`~litestar_pipelines.exceptions.PersistenceError`, which the engine
treats as a degradation rather than a run failure.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from advanced_alchemy.exceptions import RepositoryError
from sqlalchemy.exc import SQLAlchemyError

from litestar_pipelines.core.models import HistoryEntry, Outcome
from litestar_pipelines.core.types import HistoryEventType, RunStatus
from litestar_pipelines.db.models import HistoryEntryModel, PipelineRunModel, WorkflowDefinitionModel
from litestar_pipelines.db.repositories import (
    HistoryEntryRepository,
    PipelineRunRepository,
    WorkflowDefinitionRepository,
)
from litestar_pipelines.exceptions import PersistenceError
from litestar_pipelines.history import HistoryCursor

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_pipelines.core.models import Run
    from litestar_pipelines.engine.graph import WorkflowGraph

__all__ = [
    "SQLAlchemyDefinitionStore",
    "SQLAlchemyHistoryStore",
    "SQLAlchemyRunStore",
]

# Repository helpers wrap driver errors, raw session calls do not
_DB_ERRORS = (RepositoryError, SQLAlchemyError)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back naive
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    value = _aware(value)
    return value.isoformat() if value else None


class SQLAlchemyHistoryStore:
    """History store writing one ``pipeline_history`` row per entry.

    Example:
        >>> session_maker = async_sessionmaker(engine, expire_on_commit=False)
        >>> history = SQLAlchemyHistoryStore(session_maker)
        >>> entries = await history.query(run_id).to_list()
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def append(self, entry: HistoryEntry) -> None:
        model = HistoryEntryModel(
            run_id=entry.run_id,
            sequence=entry.sequence,
            state_id=entry.state_id,
            event=entry.event,
            timestamp=entry.timestamp,
            attempt=entry.attempt,
            input_data=entry.input,
            outcome=entry.outcome.to_dict() if entry.outcome else None,
            delay_seconds=entry.delay_seconds,
        )
        try:
            async with self.session_maker() as session:
                await HistoryEntryRepository(session=session).add(model, auto_commit=True)
        except _DB_ERRORS as e:
            msg = f"Could not append entry {entry.sequence} of run '{entry.run_id}': {e}"
            raise PersistenceError(msg) from e

    def query(self, run_id: str) -> HistoryCursor:
        async def _fetch() -> list[HistoryEntry]:
            try:
                async with self.session_maker() as session:
                    rows = await HistoryEntryRepository(session=session).find_by_run(run_id)
            except _DB_ERRORS as e:
                msg = f"Could not read history of run '{run_id}': {e}"
                raise PersistenceError(msg) from e
            return [self._to_entry(row) for row in rows]

        return HistoryCursor(_fetch)

    @staticmethod
    def _to_entry(row: HistoryEntryModel) -> HistoryEntry:
        return HistoryEntry(
            run_id=row.run_id,
            sequence=row.sequence,
            state_id=row.state_id,
            event=HistoryEventType(row.event),
            timestamp=_aware(row.timestamp),  # type: ignore[arg-type]
            attempt=row.attempt,
            input=row.input_data,
            outcome=Outcome.from_dict(row.outcome) if row.outcome is not None else None,
            delay_seconds=row.delay_seconds,
        )


class SQLAlchemyRunStore:
    """Run store keeping one ``pipeline_runs`` row per run, updated in place."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def save(self, run: Run) -> None:
        try:
            async with self.session_maker() as session:
                repo = PipelineRunRepository(session=session)
                model = await repo.get_by_run_id(run.id)
                if model is None:
                    model = PipelineRunModel(run_id=run.id)
                    session.add(model)
                self._apply(model, run)
                await session.commit()
        except _DB_ERRORS as e:
            msg = f"Could not save run '{run.id}': {e}"
            raise PersistenceError(msg) from e

    async def load(self, run_id: str) -> dict[str, Any] | None:
        try:
            async with self.session_maker() as session:
                model = await PipelineRunRepository(session=session).get_by_run_id(run_id)
        except _DB_ERRORS as e:
            msg = f"Could not load run '{run_id}': {e}"
            raise PersistenceError(msg) from e
        return self._to_record(model) if model is not None else None

    async def list_records(self, status: str | None = None) -> list[dict[str, Any]]:
        try:
            async with self.session_maker() as session:
                repo = PipelineRunRepository(session=session)
                models = await repo.find_by_status(RunStatus(status) if status is not None else None)
        except _DB_ERRORS as e:
            msg = f"Could not list runs: {e}"
            raise PersistenceError(msg) from e
        return [self._to_record(model) for model in models]

    @staticmethod
    def _apply(model: PipelineRunModel, run: Run) -> None:
        model.parent_run_id = run.parent_id
        model.branch_index = run.branch_index
        model.workflow_name = run.workflow_name
        model.workflow_version = run.workflow_version
        model.status = run.status
        model.current_state = run.current_state
        model.context_data = run.context
        model.state_input = run.state_input
        model.attempts = dict(run.attempts)
        model.error = run.error
        model.cause = run.cause
        model.started_at = run.started_at
        model.completed_at = run.completed_at
        model.deadline = run.deadline
        model.resume_at = run.resume_at
        model.in_flight = run.in_flight
        model.degraded = run.degraded
        model.sequence = run.sequence

    @staticmethod
    def _to_record(model: PipelineRunModel) -> dict[str, Any]:
        return {
            "id": model.run_id,
            "workflow_name": model.workflow_name,
            "workflow_version": model.workflow_version,
            "status": str(RunStatus(model.status)),
            "current_state": model.current_state,
            "context": model.context_data,
            "attempts": dict(model.attempts or {}),
            "state_input": model.state_input,
            "started_at": _isoformat(model.started_at),
            "completed_at": _isoformat(model.completed_at),
            "deadline": _isoformat(model.deadline),
            "resume_at": _isoformat(model.resume_at),
            "error": model.error,
            "cause": model.cause,
            "parent_id": model.parent_run_id,
            "branch_index": model.branch_index,
            "in_flight": model.in_flight,
            "degraded": model.degraded,
            "sequence": model.sequence,
        }


class SQLAlchemyDefinitionStore:
    """Keeps registered workflow documents so they survive a restart."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def save(self, graph: WorkflowGraph) -> None:
        """Insert the document of ``graph`` unless that name and version already exist."""
        try:
            async with self.session_maker() as session:
                repo = WorkflowDefinitionRepository(session=session)
                if await repo.get_by_name(graph.name, graph.version, active_only=False) is not None:
                    return
                model = WorkflowDefinitionModel(
                    name=graph.name,
                    version=graph.version,
                    comment=graph.definition.comment or None,
                    definition_json=graph.definition.to_document(),
                    is_active=True,
                )
                await repo.add(model, auto_commit=True)
        except _DB_ERRORS as e:
            msg = f"Could not save workflow '{graph.name}' version {graph.version}: {e}"
            raise PersistenceError(msg) from e

    async def load_active(self) -> list[dict[str, Any]]:
        """Documents of every active workflow version, oldest first."""
        try:
            async with self.session_maker() as session:
                models = await WorkflowDefinitionRepository(session=session).list_active()
        except _DB_ERRORS as e:
            msg = f"Could not load workflow documents: {e}"
            raise PersistenceError(msg) from e
        return [dict(model.definition_json) for model in models]

    async def deactivate(self, name: str, version: str) -> bool:
        try:
            async with self.session_maker() as session:
                repo = WorkflowDefinitionRepository(session=session)
                changed = await repo.deactivate_version(name, version)
                await session.commit()
        except _DB_ERRORS as e:
            msg = f"Could not deactivate workflow '{name}' version {version}: {e}"
            raise PersistenceError(msg) from e
        return changed
