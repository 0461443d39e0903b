"""Event and schedule triggers.

This module provides trigger rules, event pattern matching, cron and rate
schedules, and the gateway that queues workflow starts.
"""

from __future__ import annotations

from litestar_pipelines.triggers.gateway import TriggerGateway
from litestar_pipelines.triggers.patterns import matches, validate_pattern
from litestar_pipelines.triggers.rules import SCHEDULE_SOURCE, Event, StartRequest, TriggerRule
from litestar_pipelines.triggers.schedule import CronSchedule, RateSchedule, Schedule, parse_schedule

__all__ = [
    "SCHEDULE_SOURCE",
    "CronSchedule",
    "Event",
    "RateSchedule",
    "Schedule",
    "StartRequest",
    "TriggerGateway",
    "TriggerRule",
    "matches",
    "parse_schedule",
    "validate_pattern",
]
