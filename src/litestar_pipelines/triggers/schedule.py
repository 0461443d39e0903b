"""Schedule expressions for time-based trigger rules.

Two forms are accepted:

* five-field cron, ``"minute hour day-of-month month day-of-week"``, with ``*``,
  lists, ranges, steps and three-letter month and weekday names;
* ``"rate(N minutes|hours|days)"``.

All times are UTC.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TypeAlias, Union

from litestar_pipelines.exceptions import TriggerConfigurationError

__all__ = ["CronSchedule", "RateSchedule", "Schedule", "parse_schedule"]

_RATE = re.compile(r"^rate\(\s*(\d+)\s+(minute|minutes|hour|hours|day|days)\s*\)$", re.IGNORECASE)
_RATE_UNITS = {"minute": 60, "hour": 3600, "day": 86400}

_MONTHS = {
    name: index
    for index, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"], start=1
    )
}
_WEEKDAYS = {name: index for index, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"])}

# (name, low, high, aliases)
_FIELDS = (
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day of month", 1, 31, {}),
    ("month", 1, 12, _MONTHS),
    ("day of week", 0, 7, _WEEKDAYS),
)

_SEARCH_LIMIT = timedelta(days=366 * 5)


def _utc(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc) if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _parse_value(token: str, aliases: dict[str, int], name: str) -> int:
    upper = token.upper()
    if upper in aliases:
        return aliases[upper]
    if not token.isdigit():
        msg = f"Invalid {name} value '{token}'"
        raise TriggerConfigurationError(msg)
    return int(token)


def _parse_field(text: str, name: str, low: int, high: int, aliases: dict[str, int]) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                msg = f"Invalid {name} step '{step_text}'"
                raise TriggerConfigurationError(msg)
            step = int(step_text)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            first, last = part.split("-", 1)
            start, end = _parse_value(first, aliases, name), _parse_value(last, aliases, name)
        else:
            start = _parse_value(part, aliases, name)
            end = high if step > 1 else start

        if not (low <= start <= high and low <= end <= high) or start > end:
            msg = f"{name.capitalize()} range '{part}' outside {low}-{high}"
            raise TriggerConfigurationError(msg)
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """A parsed five-field cron expression.

    Example:
        >>> schedule = CronSchedule.parse("0 6 * * MON-FRI")
        >>> schedule.next_after(datetime(2024, 1, 6, tzinfo=timezone.utc))
        datetime.datetime(2024, 1, 8, 6, 0, tzinfo=datetime.timezone.utc)
    """

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    days_restricted: bool
    weekdays_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        """Parse a cron expression.

        Raises:
            TriggerConfigurationError: If the expression is malformed.
        """
        fields = expression.split()
        if len(fields) != len(_FIELDS):
            msg = f"Cron expression '{expression}' needs 5 fields, got {len(fields)}"
            raise TriggerConfigurationError(msg)
        minutes, hours, days, months, weekdays = (
            _parse_field(text, name, low, high, aliases)
            for text, (name, low, high, aliases) in zip(fields, _FIELDS)
        )
        # 7 is an alias for Sunday
        if 7 in weekdays:
            weekdays = (weekdays - {7}) | {0}
        return cls(
            expression=expression,
            minutes=minutes,
            hours=hours,
            days=days,
            months=months,
            weekdays=weekdays,
            days_restricted=not fields[2].startswith("*"),
            weekdays_restricted=not fields[4].startswith("*"),
        )

    def _day_matches(self, moment: datetime) -> bool:
        weekday = (moment.weekday() + 1) % 7
        in_days = moment.day in self.days
        in_weekdays = weekday in self.weekdays
        if self.days_restricted and self.weekdays_restricted:
            return in_days or in_weekdays
        return in_days and in_weekdays

    def matches(self, moment: datetime) -> bool:
        """Whether the minute containing ``moment`` is a firing time."""
        moment = _utc(moment)
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, moment: datetime) -> datetime:
        """First firing time strictly after ``moment``.

        Raises:
            TriggerConfigurationError: If the expression never fires (e.g. ``31 2``).
        """
        candidate = _utc(moment).replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate + _SEARCH_LIMIT
        while candidate < limit:
            if candidate.month not in self.months:
                year = candidate.year + (candidate.month == 12)
                month = candidate.month % 12 + 1
                candidate = candidate.replace(year=year, month=month, day=1, hour=0, minute=0)
                continue
            if not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue
            return candidate
        msg = f"Cron expression '{self.expression}' never fires"
        raise TriggerConfigurationError(msg)


@dataclass(frozen=True)
class RateSchedule:
    """A fixed-interval schedule such as ``rate(5 minutes)``."""

    expression: str
    interval: timedelta

    @classmethod
    def parse(cls, expression: str) -> RateSchedule:
        match = _RATE.match(expression.strip())
        if match is None:
            msg = f"Invalid rate expression '{expression}'"
            raise TriggerConfigurationError(msg)
        amount = int(match.group(1))
        if amount == 0:
            msg = f"Rate expression '{expression}' needs a positive interval"
            raise TriggerConfigurationError(msg)
        unit = match.group(2).lower().rstrip("s")
        return cls(expression=expression, interval=timedelta(seconds=amount * _RATE_UNITS[unit]))

    def next_after(self, moment: datetime) -> datetime:
        return _utc(moment) + self.interval


Schedule: TypeAlias = Union[CronSchedule, RateSchedule]


def parse_schedule(expression: str) -> Schedule:
    """Parse a cron or rate expression.

    Raises:
        TriggerConfigurationError: If the expression is malformed.
    """
    if expression.strip().lower().startswith("rate("):
        return RateSchedule.parse(expression)
    return CronSchedule.parse(expression)
