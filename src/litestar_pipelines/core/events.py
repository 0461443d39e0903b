"""Observability events emitted by the execution engine.

These are handed to an :class:`~litestar_pipelines.observability.ObservabilitySink`
on every state transition and every step error. They are plain data and carry
no behaviour.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from litestar_pipelines.core.types import RunStatus

__all__ = ["ErrorEvent", "PipelineEvent", "TransitionEvent"]


@dataclass(frozen=True)
class PipelineEvent:
    """Base class for all engine events.

    Attributes:
        run_id: Id of the run the event belongs to.
        timestamp: When the event occurred.
    """

    run_id: str
    timestamp: datetime


@dataclass(frozen=True)
class TransitionEvent(PipelineEvent):
    """Emitted whenever a run moves between states or changes status.

    Attributes:
        from_state: State the run left, ``None`` when the run starts.
        to_state: State the run entered, ``None`` when the run ends.
        status: Run status after the transition.

    Example:
        >>> event = TransitionEvent(
        ...     run_id="run-1",
        ...     timestamp=datetime.now(timezone.utc),
        ...     from_state="Crawl",
        ...     to_state="Check",
        ...     status=RunStatus.RUNNING,
        ... )
    """

    from_state: str | None
    to_state: str | None
    status: RunStatus


@dataclass(frozen=True)
class ErrorEvent(PipelineEvent):
    """Emitted for step failures and persistence problems.

    Attributes:
        state_id: State that failed, if any.
        error: Error type name.
        cause: Failure detail.
        fatal: Whether the error ended the run.
    """

    state_id: str | None
    error: str
    cause: str | None = None
    fatal: bool = False
