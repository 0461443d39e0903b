"""Tests for event pattern matching and trigger rules."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from litestar_pipelines.exceptions import TriggerConfigurationError
from litestar_pipelines.triggers.patterns import matches, validate_pattern
from litestar_pipelines.triggers.rules import SCHEDULE_SOURCE, Event, TriggerRule

DOCUMENT = {
    "id": "evt-1",
    "source": "storage",
    "detail": {"bucket": "raw", "key": "raw/2024/01/a.csv", "size": 1024},
}


@pytest.mark.unit
class TestMatches:
    """Tests for matches()."""

    @pytest.mark.parametrize(
        ("pattern", "expected"),
        [
            ({"source": "storage"}, True),
            ({"source": "queue"}, False),
            ({"source": ["queue", "storage"]}, True),
            ({"detail.key": {"prefix": "raw/2024/"}}, True),
            ({"detail.key": {"prefix": "curated/"}}, False),
            ({"detail.size": {"exists": True}}, True),
            ({"detail.etag": {"exists": False}}, True),
            ({"detail.etag": {"exists": True}}, False),
            ({"detail": {"bucket": "raw", "size": 1024}}, True),
            ({"detail": {"bucket": "curated"}}, False),
            ({"source": "storage", "detail.bucket": "curated"}, False),
            ({"detail.missing": "x"}, False),
        ],
    )
    def test_conditions(self, pattern: dict, expected: bool) -> None:
        """Test each kind of condition."""
        assert matches(pattern, DOCUMENT) is expected


@pytest.mark.unit
class TestValidatePattern:
    """Tests for validate_pattern()."""

    @pytest.mark.parametrize(
        "pattern",
        [{}, "storage", {"source": []}, {"detail": {"prefix": "raw/", "other": 1}}, {"detail": {}}],
    )
    def test_invalid(self, pattern: object) -> None:
        """Test malformed patterns are rejected."""
        with pytest.raises(TriggerConfigurationError):
            validate_pattern(pattern)

    def test_valid(self) -> None:
        """Test a realistic pattern passes."""
        validate_pattern({"source": "storage", "detail": {"key": {"prefix": "raw/"}}})


@pytest.mark.unit
class TestTriggerRule:
    """Tests for TriggerRule and Event."""

    def test_needs_exactly_one_trigger(self) -> None:
        """Test a rule needs a schedule or a pattern, not both or neither."""
        with pytest.raises(TriggerConfigurationError, match="exactly one"):
            TriggerRule(name="r", workflow="ingest")
        with pytest.raises(TriggerConfigurationError, match="exactly one"):
            TriggerRule(name="r", workflow="ingest", schedule="rate(1 hour)", event_pattern={"source": "storage"})

    def test_invalid_schedule(self) -> None:
        """Test schedule expressions are parsed eagerly."""
        with pytest.raises(TriggerConfigurationError):
            TriggerRule(name="r", workflow="ingest", schedule="every day")

    def test_pattern_rule_matches_events(self) -> None:
        """Test a pattern rule matches against the event document."""
        rule = TriggerRule(name="on-upload", workflow="ingest", event_pattern={"detail.key": {"prefix": "raw/"}})

        assert rule.matches(Event(id="1", source="storage", detail={"key": "raw/a.csv"}))
        assert not rule.matches(Event(id="2", source="storage", detail={"key": "tmp/a.csv"}))
        assert rule.next_fire_after(datetime(2024, 1, 1, tzinfo=timezone.utc)) is None

    def test_schedule_rule_matches_own_ticks_only(self) -> None:
        """Test a schedule rule only answers to schedule events naming it."""
        rule = TriggerRule(name="nightly", workflow="ingest", schedule="0 2 * * *")

        assert rule.matches(Event(id="t", source=SCHEDULE_SOURCE, detail={"rule": "nightly"}))
        assert not rule.matches(Event(id="t", source=SCHEDULE_SOURCE, detail={"rule": "hourly"}))
        assert not rule.matches(Event(id="t", source="storage", detail={"rule": "nightly"}))

    def test_from_dict(self) -> None:
        """Test rules and events can be built from plain documents."""
        rule = TriggerRule.from_dict(
            {"name": "hourly", "workflow": "ingest", "schedule": "rate(1 hour)", "input": {"bucket": "raw"}}
        )
        event = Event.from_dict({"id": 7, "source": "storage", "time": "2024-01-01T00:00:00+00:00"})

        assert rule.input == {"bucket": "raw"}
        assert rule.next_fire_after(datetime(2024, 1, 1, tzinfo=timezone.utc)) == datetime(
            2024, 1, 1, 1, tzinfo=timezone.utc
        )
        assert event.id == "7"
        assert event.detail == {}
        assert event.as_document()["time"] == "2024-01-01T00:00:00+00:00"
