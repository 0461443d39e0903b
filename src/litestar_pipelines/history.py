"""Execution history and run archive stores.

The history store is an append-only log of :class:`~litestar_pipelines.core.models.HistoryEntry`
records partitioned by run id. The run store keeps the latest serialized view of
every run so a suspended run can be resumed after a restart. Both come in an
in-memory flavour here; SQLAlchemy backed versions live in
:mod:`litestar_pipelines.db`.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from litestar_pipelines.exceptions import PersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from litestar_pipelines.core.models import HistoryEntry, Run

__all__ = [
    "HistoryCursor",
    "HistoryStore",
    "InMemoryHistoryStore",
    "InMemoryRunStore",
    "RunStore",
]


class HistoryCursor:
    """Lazy, restartable view over one run's history.

    Nothing is read until the cursor is iterated, and every iteration reads the
    store again, so a cursor can be replayed after more entries were appended.

    Example:
        >>> cursor = store.query(run.id)
        >>> async for entry in cursor:
        ...     print(entry.sequence, entry.event)
        >>> entries = await cursor.to_list()
    """

    def __init__(self, fetch: Callable[[], Awaitable[list[HistoryEntry]]]) -> None:
        self._fetch = fetch

    async def __aiter__(self) -> AsyncIterator[HistoryEntry]:
        for entry in await self.to_list():
            yield entry

    async def to_list(self) -> list[HistoryEntry]:
        """Read every entry, ordered by timestamp then sequence."""
        entries = await self._fetch()
        return sorted(entries, key=lambda entry: entry.sort_key)


@runtime_checkable
class HistoryStore(Protocol):
    """Append-only store of history entries."""

    async def append(self, entry: HistoryEntry) -> None:
        """Append ``entry`` to its run's history.

        Raises:
            PersistenceError: If the underlying store is unavailable.
        """
        ...

    def query(self, run_id: str) -> HistoryCursor:
        """Return a cursor over the history of ``run_id``."""
        ...


@runtime_checkable
class RunStore(Protocol):
    """Keeps the latest serialized state of every run."""

    async def save(self, run: Run) -> None:
        """Insert or replace the record for ``run``.

        Raises:
            PersistenceError: If the underlying store is unavailable.
        """
        ...

    async def load(self, run_id: str) -> dict[str, Any] | None:
        """Return the record saved for ``run_id``, if any."""
        ...

    async def list_records(self, status: str | None = None) -> list[dict[str, Any]]:
        """Return saved records, optionally filtered by status."""
        ...


class InMemoryHistoryStore:
    """History store backed by per-run lists.

    Attributes:
        available: Set to ``False`` to make ``append`` raise
            :class:`~litestar_pipelines.exceptions.PersistenceError`, which
            simulates an unavailable backend.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[HistoryEntry]] = defaultdict(list)
        self.available = True

    async def append(self, entry: HistoryEntry) -> None:
        if not self.available:
            msg = f"History store unavailable, dropped entry {entry.sequence} of run '{entry.run_id}'"
            raise PersistenceError(msg)
        self._entries[entry.run_id].append(entry)

    def query(self, run_id: str) -> HistoryCursor:
        async def _fetch() -> list[HistoryEntry]:
            return list(self._entries.get(run_id, ()))

        return HistoryCursor(_fetch)

    def run_ids(self) -> list[str]:
        """Ids of every run with at least one entry."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class InMemoryRunStore:
    """Run store keeping deep copies of :meth:`Run.to_dict` output."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self.available = True

    async def save(self, run: Run) -> None:
        if not self.available:
            msg = f"Run store unavailable, could not save run '{run.id}'"
            raise PersistenceError(msg)
        self._records[run.id] = copy.deepcopy(run.to_dict())

    async def load(self, run_id: str) -> dict[str, Any] | None:
        record = self._records.get(run_id)
        return copy.deepcopy(record) if record is not None else None

    async def list_records(self, status: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for record in self._records.values()
            if status is None or record["status"] == status
        ]
