"""Configuration for the execution engine and the trigger gateway."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["EngineConfig", "GatewayConfig"]


@dataclass
class EngineConfig:
    """Tunables of :class:`~litestar_pipelines.engine.local.ExecutionEngine`.

    Attributes:
        default_task_timeout: Seconds a Task invocation may take when its state
            sets no ``timeout_seconds``. Task invocations are always bounded.
        default_run_timeout: Seconds a run may take when its workflow sets no
            ``timeout_seconds``. ``None`` means no run deadline.
        default_max_concurrency: Upper bound on running Map items when the Map
            state sets no ``max_concurrency``.
        poll_interval: Seconds between scheduler ticks in :meth:`ExecutionEngine.serve`.

    Example:
        >>> config = EngineConfig(default_task_timeout=60, default_run_timeout=3600)
    """

    default_task_timeout: float = 300.0
    default_run_timeout: float | None = None
    default_max_concurrency: int = 10
    poll_interval: float = 1.0

    def __post_init__(self) -> None:
        if self.default_task_timeout <= 0:
            msg = "default_task_timeout must be positive"
            raise ValueError(msg)
        if self.default_max_concurrency < 1:
            msg = "default_max_concurrency must be at least 1"
            raise ValueError(msg)


@dataclass
class GatewayConfig:
    """Tunables of :class:`~litestar_pipelines.triggers.gateway.TriggerGateway`.

    Attributes:
        dedup_window: Seconds during which a repeated ``(event id, rule name)``
            pair is ignored.
        queue_maxsize: Bound of the start-request queue, ``0`` for unbounded.
    """

    dedup_window: float = 300.0
    queue_maxsize: int = 0
