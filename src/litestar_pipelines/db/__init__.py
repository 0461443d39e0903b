"""Database persistence layer for litestar-pipelines.

This module provides SQLAlchemy models, repositories and the durable
history, run and definition stores the engine writes through.

Requires the [db] extra:
    pip install litestar-pipelines[db]
"""

from __future__ import annotations

from litestar_pipelines.db.models import HistoryEntryModel, PipelineRunModel, WorkflowDefinitionModel
from litestar_pipelines.db.repositories import (
    HistoryEntryRepository,
    PipelineRunRepository,
    WorkflowDefinitionRepository,
)
from litestar_pipelines.db.stores import SQLAlchemyDefinitionStore, SQLAlchemyHistoryStore, SQLAlchemyRunStore

__all__ = [
    "HistoryEntryModel",
    "HistoryEntryRepository",
    "PipelineRunModel",
    "PipelineRunRepository",
    "SQLAlchemyDefinitionStore",
    "SQLAlchemyHistoryStore",
    "SQLAlchemyRunStore",
    "WorkflowDefinitionModel",
    "WorkflowDefinitionRepository",
]
