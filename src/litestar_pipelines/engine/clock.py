"""Clocks used by the engine, the scheduler and the trigger gateway.

Every time-dependent decision goes through a clock object so tests can drive
waits, backoffs and deadlines with simulated time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable

__all__ = ["Clock", "ManualClock", "SystemClock"]


@runtime_checkable
class Clock(Protocol):
    """Source of the current time. Always returns timezone-aware UTC datetimes."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Simulated clock that only moves when told to.

    Args:
        start: Initial time. Naive datetimes are taken as UTC.

    Example:
        >>> clock = ManualClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        >>> clock.advance(30)
        >>> clock.now()
        datetime.datetime(2024, 1, 1, 0, 0, 30, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._now = start if start.tzinfo else start.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float | timedelta) -> datetime:
        """Move the clock forward and return the new time.

        Raises:
            ValueError: If asked to move backwards.
        """
        delta = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        return self.advance_to(self._now + delta)

    def advance_to(self, moment: datetime) -> datetime:
        """Move the clock to ``moment`` and return it.

        Raises:
            ValueError: If ``moment`` is earlier than the current time.
        """
        if moment < self._now:
            msg = f"ManualClock cannot move backwards from {self._now.isoformat()} to {moment.isoformat()}"
            raise ValueError(msg)
        self._now = moment
        return self._now
