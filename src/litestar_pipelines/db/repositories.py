"""Repository implementations for pipeline persistence.

This module provides async repositories for the pipeline models using
advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, select

from litestar_pipelines.core.types import RunStatus
from litestar_pipelines.db.models import HistoryEntryModel, PipelineRunModel, WorkflowDefinitionModel

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "HistoryEntryRepository",
    "PipelineRunRepository",
    "WorkflowDefinitionRepository",
]


class WorkflowDefinitionRepository(SQLAlchemyAsyncRepository[WorkflowDefinitionModel]):
    """Repository for persisted workflow documents."""

    model_type = WorkflowDefinitionModel

    async def get_by_name(
        self,
        name: str,
        version: str | None = None,
        *,
        active_only: bool = True,
    ) -> WorkflowDefinitionModel | None:
        """Get a workflow document by name and optional version.

        Args:
            name: The workflow name.
            version: Optional specific version. If None, returns the newest matching row.
            active_only: If True, only return active documents.

        Returns:
            The workflow document or None if not found.
        """
        conditions = [WorkflowDefinitionModel.name == name]

        if version:
            conditions.append(WorkflowDefinitionModel.version == version)

        if active_only:
            conditions.append(WorkflowDefinitionModel.is_active == True)  # noqa: E712

        stmt = (
            select(WorkflowDefinitionModel)
            .where(and_(*conditions))
            .order_by(WorkflowDefinitionModel.created_at.desc())
            .limit(1)
        )

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self) -> Sequence[WorkflowDefinitionModel]:
        """List all active workflow documents, oldest first."""
        stmt = (
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.is_active == True)  # noqa: E712
            .order_by(WorkflowDefinitionModel.name, WorkflowDefinitionModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def deactivate_version(self, name: str, version: str) -> bool:
        """Deactivate a specific workflow version.

        Returns:
            True if a document was deactivated.
        """
        definition = await self.get_by_name(name, version, active_only=False)
        if definition:
            definition.is_active = False
            await self.session.flush()
            return True
        return False


class PipelineRunRepository(SQLAlchemyAsyncRepository[PipelineRunModel]):
    """Repository for run records.

    Provides lookups by engine run id and the status queries used on recovery.
    """

    model_type = PipelineRunModel

    async def get_by_run_id(self, run_id: str) -> PipelineRunModel | None:
        """Get the record of ``run_id``.

        Args:
            run_id: The engine run id.

        Returns:
            The run record or None.
        """
        return await self.get_one_or_none(PipelineRunModel.run_id == run_id)

    async def find_by_workflow(
        self,
        workflow_name: str,
        status: RunStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[PipelineRunModel], int]:
        """Find runs of a workflow with optional status filter.

        Args:
            workflow_name: The workflow name to filter by.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (runs, total_count).
        """
        conditions = [PipelineRunModel.workflow_name == workflow_name]

        if status:
            conditions.append(PipelineRunModel.status == status)

        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="started_at", sort_order="desc"),
        )

    async def find_by_status(self, status: RunStatus | None = None) -> Sequence[PipelineRunModel]:
        """Find runs by status, oldest first. ``None`` returns every run."""
        stmt = select(PipelineRunModel).order_by(PipelineRunModel.started_at)
        if status is not None:
            stmt = stmt.where(PipelineRunModel.status == status)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_children(self, parent_run_id: str) -> Sequence[PipelineRunModel]:
        """Find the Parallel branches or Map items of a run, by index."""
        stmt = (
            select(PipelineRunModel)
            .where(PipelineRunModel.parent_run_id == parent_run_id)
            .order_by(PipelineRunModel.branch_index)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class HistoryEntryRepository(SQLAlchemyAsyncRepository[HistoryEntryModel]):
    """Repository for execution history rows."""

    model_type = HistoryEntryModel

    async def find_by_run(self, run_id: str) -> Sequence[HistoryEntryModel]:
        """Find every entry of a run.

        Args:
            run_id: The engine run id.

        Returns:
            Entries ordered by timestamp then sequence.
        """
        stmt = (
            select(HistoryEntryModel)
            .where(HistoryEntryModel.run_id == run_id)
            .order_by(HistoryEntryModel.timestamp, HistoryEntryModel.sequence)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
