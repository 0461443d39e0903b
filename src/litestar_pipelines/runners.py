"""Job runner interface and an in-process implementation.

Task states never do work themselves; the engine hands the resolved parameters
to a job runner and waits for a :class:`JobResult`. Crawlers, ETL jobs and
validation queries are all reached through this one interface.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from litestar_pipelines.exceptions import StepExecutionError

__all__ = [
    "CANCELLED_ERROR",
    "RESOURCE_NOT_FOUND_ERROR",
    "CallableJobRunner",
    "JobResult",
    "JobRunner",
]

CANCELLED_ERROR = "States.Cancelled"
RESOURCE_NOT_FOUND_ERROR = "States.ResourceNotFound"


@dataclass(frozen=True)
class JobResult:
    """Outcome of one job invocation.

    Attributes:
        success: Whether the job succeeded.
        output: Job output merged into the run context on success.
        error: Error type name on failure, matched against retry and catch patterns.
        cause: Human readable failure detail.
    """

    success: bool
    output: Any = None
    error: str | None = None
    cause: str | None = None

    @classmethod
    def ok(cls, output: Any = None) -> JobResult:
        return cls(success=True, output=output)

    @classmethod
    def failure(cls, error: str, cause: str | None = None) -> JobResult:
        return cls(success=False, error=error, cause=cause)


@runtime_checkable
class JobRunner(Protocol):
    """External collaborator that executes Task states.

    Implementations must be safe to call again for the same step, since failed
    steps are retried with the same parameters.
    """

    async def invoke(
        self,
        step_id: str,
        parameters: dict[str, Any],
        context: dict[str, Any],
        *,
        run_id: str,
    ) -> JobResult:
        """Run the job behind ``step_id``.

        Args:
            step_id: The Task's resource name.
            parameters: Parameters with context references already resolved.
            context: A copy of the run context.
            run_id: The run the invocation belongs to.

        Returns:
            The job result. Raising is treated like a failed result.
        """
        ...

    async def cancel(self, run_id: str, step_id: str) -> None:
        """Best-effort cancellation of an in-flight invocation."""
        ...


JobCallable = Callable[[dict[str, Any], dict[str, Any]], Any]


class CallableJobRunner:
    """Job runner dispatching to plain Python callables.

    Each job is called as ``job(parameters, context)`` and may be sync or async.
    Return a :class:`JobResult` for full control, or any other value to succeed
    with it as output. Raised exceptions become failed results named after the
    exception class; raise :class:`~litestar_pipelines.exceptions.StepExecutionError`
    to choose the error name explicitly.

    Example:
        >>> runner = CallableJobRunner()
        >>> @runner.job("crawler")
        ... async def crawl(parameters, context):
        ...     return {"status": "READY"}
    """

    def __init__(self, jobs: Mapping[str, JobCallable] | None = None) -> None:
        self._jobs: dict[str, JobCallable] = dict(jobs or {})
        self._inflight: dict[tuple[str, str], asyncio.Future[Any]] = {}
        self._cancelled: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []

    def register(self, name: str, job: JobCallable) -> None:
        self._jobs[name] = job

    def job(self, name: str | None = None) -> Callable[[JobCallable], JobCallable]:
        """Decorator registering a callable under ``name`` (default: its ``__name__``)."""

        def decorator(func: JobCallable) -> JobCallable:
            self.register(name or func.__name__, func)
            return func

        return decorator

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    async def invoke(
        self,
        step_id: str,
        parameters: dict[str, Any],
        context: dict[str, Any],
        *,
        run_id: str,
    ) -> JobResult:
        self.calls.append((run_id, step_id))
        job = self._jobs.get(step_id)
        if job is None:
            return JobResult.failure(RESOURCE_NOT_FOUND_ERROR, f"No job registered for '{step_id}'")

        key = (run_id, step_id)
        try:
            result = job(parameters, context)
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._inflight[key] = future
                try:
                    result = await future
                except asyncio.CancelledError:
                    if key not in self._cancelled:
                        raise
                    return JobResult.failure(CANCELLED_ERROR, f"Job '{step_id}' was cancelled")
        except StepExecutionError as e:
            return JobResult.failure(e.error, e.cause)
        except Exception as e:  # noqa: BLE001
            return JobResult.failure(type(e).__name__, str(e))
        finally:
            self._inflight.pop(key, None)
            self._cancelled.discard(key)

        if isinstance(result, JobResult):
            return result
        return JobResult.ok(result)

    async def cancel(self, run_id: str, step_id: str) -> None:
        future = self._inflight.get((run_id, step_id))
        if future is not None and not future.done():
            self._cancelled.add((run_id, step_id))
            future.cancel()
