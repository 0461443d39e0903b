"""Observability sinks for the execution engine.

The engine holds no global logger or metrics registry. A sink is passed in at
construction and receives a :class:`~litestar_pipelines.core.events.TransitionEvent`
for every state change and an :class:`~litestar_pipelines.core.events.ErrorEvent`
for every step failure or persistence problem.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from litestar_pipelines.core.events import ErrorEvent, TransitionEvent

__all__ = [
    "CompositeSink",
    "LoggingSink",
    "NullSink",
    "ObservabilitySink",
    "RecordingSink",
]


@runtime_checkable
class ObservabilitySink(Protocol):
    """Receiver for engine events.

    Implementations must not raise; the engine calls them inline while it owns
    the run.
    """

    def on_transition(self, event: TransitionEvent) -> None:
        """Handle a state transition or status change."""
        ...

    def on_error(self, event: ErrorEvent) -> None:
        """Handle a step failure or persistence error."""
        ...


class NullSink:
    """Sink that drops every event."""

    def on_transition(self, event: TransitionEvent) -> None:
        pass

    def on_error(self, event: ErrorEvent) -> None:
        pass


class LoggingSink:
    """Sink that writes events to a standard library logger.

    Transitions are logged at ``DEBUG`` and terminal status changes at ``INFO``.
    Recoverable errors are logged at ``WARNING`` and fatal ones at ``ERROR``.

    Args:
        logger: Logger to write to. Defaults to the ``litestar_pipelines.engine`` logger.

    Example:
        >>> engine = ExecutionEngine(registry, runner, sink=LoggingSink())
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("litestar_pipelines.engine")

    def on_transition(self, event: TransitionEvent) -> None:
        level = logging.INFO if event.status.is_terminal else logging.DEBUG
        self.logger.log(
            level,
            "run %s: %s -> %s (%s)",
            event.run_id,
            event.from_state or "<start>",
            event.to_state or "<end>",
            event.status,
        )

    def on_error(self, event: ErrorEvent) -> None:
        self.logger.log(
            logging.ERROR if event.fatal else logging.WARNING,
            "run %s: state %s raised %s: %s",
            event.run_id,
            event.state_id,
            event.error,
            event.cause,
        )


class CompositeSink:
    """Sink that forwards every event to several sinks in order."""

    def __init__(self, sinks: Iterable[ObservabilitySink]) -> None:
        self.sinks = list(sinks)

    def on_transition(self, event: TransitionEvent) -> None:
        for sink in self.sinks:
            sink.on_transition(event)

    def on_error(self, event: ErrorEvent) -> None:
        for sink in self.sinks:
            sink.on_error(event)


class RecordingSink:
    """Sink that keeps every event in memory, mostly useful in tests.

    Attributes:
        transitions: Transition events in emission order.
        errors: Error events in emission order.
    """

    def __init__(self) -> None:
        self.transitions: list[TransitionEvent] = []
        self.errors: list[ErrorEvent] = []

    def on_transition(self, event: TransitionEvent) -> None:
        self.transitions.append(event)

    def on_error(self, event: ErrorEvent) -> None:
        self.errors.append(event)

    def for_run(self, run_id: str) -> list[TransitionEvent]:
        """Transitions recorded for a single run."""
        return [event for event in self.transitions if event.run_id == run_id]
