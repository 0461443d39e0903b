"""Poll/wait scheduler.

The scheduler only keeps time-ordered run ids. It never executes step logic:
the engine asks it which runs are due and resumes them itself.
"""

from __future__ import annotations

import heapq
import itertools
from datetime import datetime

__all__ = ["WaitScheduler"]


class WaitScheduler:
    """Min-heap of wake times and run deadlines.

    Each run has at most one pending wake. Scheduling a new wake for a run
    supersedes the old one; superseded and cancelled heap entries are skipped
    lazily when popped. A wake is returned by :meth:`tick` once, and never before
    its ``resume_at``.

    Example:
        >>> scheduler = WaitScheduler()
        >>> scheduler.schedule_wake("run-1", clock.now() + timedelta(seconds=30))
        >>> scheduler.tick(clock.now())
        []
    """

    def __init__(self) -> None:
        self._counter = itertools.count()
        self._wakes: list[tuple[datetime, int, str]] = []
        self._pending: dict[str, tuple[datetime, int]] = {}
        self._deadline_heap: list[tuple[datetime, int, str]] = []
        self._deadlines: dict[str, tuple[datetime, int]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def schedule_wake(self, run_id: str, resume_at: datetime) -> None:
        """Wake ``run_id`` at or after ``resume_at``, replacing any pending wake."""
        key = (resume_at, next(self._counter))
        self._pending[run_id] = key
        heapq.heappush(self._wakes, (*key, run_id))

    def cancel(self, run_id: str) -> bool:
        """Drop the pending wake of ``run_id``. Returns whether one existed."""
        return self._pending.pop(run_id, None) is not None

    def wake_at(self, run_id: str) -> datetime | None:
        """Pending wake time of ``run_id``, if any."""
        pending = self._pending.get(run_id)
        return pending[0] if pending else None

    def next_wake(self) -> datetime | None:
        """Earliest pending wake time."""
        self._discard_stale(self._wakes, self._pending)
        return self._wakes[0][0] if self._wakes else None

    def tick(self, now: datetime) -> list[str]:
        """Pop every run whose wake time is ``<= now``, earliest first."""
        return self._pop_due(self._wakes, self._pending, now)

    def schedule_deadline(self, run_id: str, deadline: datetime) -> None:
        """Report ``run_id`` from :meth:`expired` once ``deadline`` has passed."""
        key = (deadline, next(self._counter))
        self._deadlines[run_id] = key
        heapq.heappush(self._deadline_heap, (*key, run_id))

    def clear_deadline(self, run_id: str) -> None:
        self._deadlines.pop(run_id, None)

    def next_deadline(self) -> datetime | None:
        """Earliest pending run deadline."""
        self._discard_stale(self._deadline_heap, self._deadlines)
        return self._deadline_heap[0][0] if self._deadline_heap else None

    def expired(self, now: datetime) -> list[str]:
        """Pop every run whose deadline is ``<= now``."""
        return self._pop_due(self._deadline_heap, self._deadlines, now)

    def next_due(self) -> datetime | None:
        """Earliest pending wake or deadline."""
        candidates = [moment for moment in (self.next_wake(), self.next_deadline()) if moment is not None]
        return min(candidates) if candidates else None

    @staticmethod
    def _discard_stale(heap: list[tuple[datetime, int, str]], live: dict[str, tuple[datetime, int]]) -> None:
        while heap and live.get(heap[0][2]) != heap[0][:2]:
            heapq.heappop(heap)

    @staticmethod
    def _pop_due(
        heap: list[tuple[datetime, int, str]],
        live: dict[str, tuple[datetime, int]],
        now: datetime,
    ) -> list[str]:
        due = []
        while heap and heap[0][0] <= now:
            moment, order, run_id = heapq.heappop(heap)
            if live.get(run_id) == (moment, order):
                del live[run_id]
                due.append(run_id)
        return due
