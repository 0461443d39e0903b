"""Trigger rules, inbound events and start requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from litestar_pipelines.exceptions import TriggerConfigurationError
from litestar_pipelines.triggers.patterns import matches, validate_pattern
from litestar_pipelines.triggers.schedule import Schedule, parse_schedule

__all__ = ["SCHEDULE_SOURCE", "Event", "StartRequest", "TriggerRule"]

SCHEDULE_SOURCE = "schedule"
"""Source of the synthetic events produced by schedule ticks."""


@dataclass(frozen=True)
class Event:
    """An inbound event.

    Attributes:
        id: Producer-assigned id, used for deduplication.
        source: Name of the producer, ``"schedule"`` for schedule ticks.
        detail: Event payload.
        time: When the event happened.
    """

    id: str
    source: str
    detail: dict[str, Any] = field(default_factory=dict)
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_document(self) -> dict[str, Any]:
        """The document event patterns are evaluated against."""
        return {"id": self.id, "source": self.source, "time": self.time.isoformat(), "detail": self.detail}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        time = data.get("time")
        return cls(
            id=str(data["id"]),
            source=str(data["source"]),
            detail=dict(data.get("detail") or {}),
            time=datetime.fromisoformat(time) if isinstance(time, str) else time or datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class TriggerRule:
    """Starts a workflow on a schedule or when an event matches a pattern.

    Exactly one of ``schedule`` and ``event_pattern`` must be set.

    Attributes:
        name: Unique rule name, part of the deduplication key.
        workflow: Name of the registered workflow to start.
        schedule: Cron or rate expression.
        event_pattern: Pattern evaluated against inbound events.
        input: Static initial context. The triggering event is added under ``"event"``.

    Example:
        >>> TriggerRule(name="nightly", workflow="ingest", schedule="0 2 * * *")
        >>> TriggerRule(name="on-upload", workflow="ingest", event_pattern={"source": "storage"})
    """

    name: str
    workflow: str
    schedule: str | None = None
    event_pattern: dict[str, Any] | None = None
    input: dict[str, Any] = field(default_factory=dict)
    parsed_schedule: Schedule | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if (self.schedule is None) == (self.event_pattern is None):
            msg = f"Trigger rule '{self.name}' needs exactly one of schedule and event_pattern"
            raise TriggerConfigurationError(msg)
        if self.schedule is not None:
            object.__setattr__(self, "parsed_schedule", parse_schedule(self.schedule))
        else:
            validate_pattern(self.event_pattern)

    def matches(self, event: Event) -> bool:
        """Whether ``event`` should start this rule's workflow."""
        if self.event_pattern is not None:
            return matches(self.event_pattern, event.as_document())
        return event.source == SCHEDULE_SOURCE and event.detail.get("rule") == self.name

    def next_fire_after(self, moment: datetime) -> datetime | None:
        """Next schedule occurrence after ``moment``, ``None`` for pattern rules."""
        return self.parsed_schedule.next_after(moment) if self.parsed_schedule is not None else None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerRule:
        return cls(
            name=data["name"],
            workflow=data["workflow"],
            schedule=data.get("schedule"),
            event_pattern=data.get("event_pattern"),
            input=dict(data.get("input") or {}),
        )


@dataclass(frozen=True)
class StartRequest:
    """A queued request to start one run.

    Attributes:
        run_id: Run id allocated by the gateway.
        workflow: Workflow name.
        input: Initial context.
        rule: Name of the rule that matched.
        event_id: Id of the triggering event.
    """

    run_id: str
    workflow: str
    input: dict[str, Any]
    rule: str
    event_id: str
