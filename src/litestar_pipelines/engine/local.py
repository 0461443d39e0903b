"""Local in-process async execution engine.

This module provides the engine that walks validated workflow graphs. It runs in
one event loop: every run is advanced by at most one asyncio task at a time, and a
run suspended on a Wait state, a retry backoff or a fan-out holds no task at all.
Its whole continuation is ``current_state`` + ``context``, which is what the run
store persists and :meth:`ExecutionEngine.resume` reloads.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from litestar_pipelines.config import EngineConfig
from litestar_pipelines.core.context import get_path, merge_output, resolve_parameters, set_path, snapshot
from litestar_pipelines.core.definition import WorkflowDefinition
from litestar_pipelines.core.events import ErrorEvent, TransitionEvent
from litestar_pipelines.core.models import FanOut, HistoryEntry, Outcome, Run
from litestar_pipelines.core.states import (
    ChoiceState,
    FailState,
    MapState,
    ParallelState,
    PassState,
    RecoverableState,
    SucceedState,
    TaskState,
    TransitionState,
    WaitState,
)
from litestar_pipelines.core.types import HistoryEventType, RunStatus, StateType
from litestar_pipelines.engine.clock import SystemClock
from litestar_pipelines.engine.graph import WorkflowGraph, validate
from litestar_pipelines.engine.scheduler import WaitScheduler
from litestar_pipelines.exceptions import (
    CancellationError,
    ExecutionTimeoutError,
    InvalidStateError,
    PersistenceError,
    RunAlreadyTerminalError,
    RunNotFoundError,
    StepExecutionError,
)
from litestar_pipelines.history import InMemoryHistoryStore
from litestar_pipelines.observability import NullSink
from litestar_pipelines.runners import CANCELLED_ERROR, JobResult

if TYPE_CHECKING:
    from litestar_pipelines.core.states import StateDefinition
    from litestar_pipelines.engine.clock import Clock
    from litestar_pipelines.engine.registry import WorkflowRegistry
    from litestar_pipelines.history import HistoryCursor, HistoryStore, RunStore
    from litestar_pipelines.observability import ObservabilitySink
    from litestar_pipelines.runners import JobRunner

__all__ = ["RUNTIME_ERROR", "TIMEOUT_ERROR", "ExecutionEngine"]

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "States.Timeout"
RUNTIME_ERROR = "States.Runtime"

_TERMINAL_EVENTS = {
    RunStatus.SUCCEEDED: HistoryEventType.RUN_SUCCEEDED,
    RunStatus.FAILED: HistoryEventType.RUN_FAILED,
    RunStatus.TIMED_OUT: HistoryEventType.RUN_TIMED_OUT,
    RunStatus.CANCELLED: HistoryEventType.RUN_CANCELLED,
}

_STATUS_ERRORS = {
    RunStatus.FAILED: RUNTIME_ERROR,
    RunStatus.TIMED_OUT: TIMEOUT_ERROR,
    RunStatus.CANCELLED: CANCELLED_ERROR,
}


def _step_key(run_id: str) -> str:
    """Scheduler key of the deadline of the step a run has in flight."""
    return f"{run_id}#step"


class ExecutionEngine:
    """In-process async execution engine for workflow graphs.

    Attributes:
        registry: The workflow registry for looking up graphs by name.
        job_runner: Collaborator that executes Task states.
        history: Append-only store for history entries.
        scheduler: Holds wake times of suspended runs and run deadlines.
        clock: Source of time for waits, backoffs and deadlines.
        sink: Receives transition and error events.
        run_store: Optional archive of serialized runs, used by :meth:`resume`.
        config: Engine tunables.

    Example:
        >>> engine = ExecutionEngine(registry, CallableJobRunner({"crawler": crawl}))
        >>> run = await engine.start_run("ingest", {"bucket": "raw"})
        >>> await engine.wait_done(run.id)
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        job_runner: JobRunner,
        history: HistoryStore | None = None,
        scheduler: WaitScheduler | None = None,
        clock: Clock | None = None,
        sink: ObservabilitySink | None = None,
        run_store: RunStore | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        """Initialize the execution engine.

        Args:
            registry: The workflow registry.
            job_runner: The job runner invoked by Task states.
            history: History store, in-memory by default.
            scheduler: Wait scheduler, a fresh one by default.
            clock: Clock, wall clock time by default.
            sink: Observability sink, events are dropped by default.
            run_store: Optional run archive.
            config: Engine configuration.
        """
        self.registry = registry
        self.job_runner = job_runner
        self.history: HistoryStore = history if history is not None else InMemoryHistoryStore()
        self.scheduler = scheduler if scheduler is not None else WaitScheduler()
        self.clock: Clock = clock if clock is not None else SystemClock()
        self.sink: ObservabilitySink = sink if sink is not None else NullSink()
        self.run_store = run_store
        self.config = config if config is not None else EngineConfig()
        self._runs: dict[str, Run] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._rearm: set[str] = set()
        self._idle: dict[str, asyncio.Event] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._step_timers: dict[str, asyncio.Event] = {}
        self._stopping = asyncio.Event()

    # Public API

    async def start_run(
        self,
        workflow: str | WorkflowGraph | WorkflowDefinition | Mapping[str, Any],
        initial_data: dict[str, Any] | None = None,
        *,
        run_id: str | None = None,
        version: str | None = None,
    ) -> Run:
        """Create a run and start advancing it in the background.

        Starting is idempotent on ``run_id``: if a run with that id already
        exists it is returned unchanged.

        Args:
            workflow: A registered workflow name, a graph, a definition or a document.
            initial_data: Initial context, copied.
            run_id: Optional run id, generated when omitted.
            version: Workflow version when ``workflow`` is a name.

        Returns:
            The new run, already ``RUNNING``.

        Raises:
            WorkflowNotFoundError: If ``workflow`` names an unregistered workflow.
            WorkflowValidationError: If ``workflow`` is an invalid definition.
        """
        graph = self._resolve_graph(workflow, version)
        if run_id is not None and run_id in self._runs:
            return self._runs[run_id]

        run = self._new_run(graph, initial_data or {}, run_id=run_id)
        await self._start(run)
        return run

    async def tick(self) -> list[str]:
        """Resume every run whose wake time or deadline has passed.

        Returns:
            Ids of the runs handed back to the engine.
        """
        now = self.clock.now()
        woken = []
        for run_id in self.scheduler.expired(now):
            timer = self._step_timers.get(run_id)
            if timer is not None:
                timer.set()
                continue
            run = self._runs.get(run_id)
            if run is None or run.is_terminal:
                continue
            self._activate(run)
            woken.append(run_id)
        for run_id in self.scheduler.tick(now):
            run = self._runs.get(run_id)
            if run is None or run.is_terminal:
                continue
            run.resume_at = None
            if isinstance(run.graph.get_state(run.current_state), WaitState):
                run.resumed = True
            self._activate(run)
            woken.append(run_id)
        return woken

    async def cancel(self, run_id: str, reason: str | None = None) -> Run:
        """Cancel a run.

        A suspended run is cancelled before this returns. A run with a step in
        flight is cancelled at its next checkpoint, and the job runner's cancel
        hook is called for the in-flight job.

        Raises:
            RunNotFoundError: If the run is unknown.
            RunAlreadyTerminalError: If the run already finished.
        """
        run = self.get_run(run_id)
        if run.is_terminal:
            raise RunAlreadyTerminalError(run.id, str(run.status))

        suspended = run.id not in self._tasks
        await self._request_cancel(run, reason)
        if suspended:
            await self.wait_idle(run.id)
        return run

    async def wait_idle(self, run_id: str | None = None) -> None:
        """Wait until a run, or every run when ``run_id`` is None, is not being advanced."""
        if run_id is None:
            while self._tasks:
                await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
            return
        self.get_run(run_id)
        await self._idle[run_id].wait()

    async def wait_done(self, run_id: str, timeout: float | None = None) -> Run:
        """Wait until a run reaches a terminal status.

        Raises:
            ExecutionTimeoutError: If ``timeout`` seconds pass first.
        """
        run = self.get_run(run_id)
        try:
            await asyncio.wait_for(self._done[run_id].wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ExecutionTimeoutError(run_id) from None
        return run

    def get_run(self, run_id: str) -> Run:
        """Return a run known to this engine.

        Raises:
            RunNotFoundError: If the run is unknown.
        """
        if run_id not in self._runs:
            raise RunNotFoundError(run_id)
        return self._runs[run_id]

    def list_runs(
        self,
        workflow_name: str | None = None,
        status: RunStatus | None = None,
        include_children: bool = False,
    ) -> list[Run]:
        """List runs, oldest first, optionally filtered.

        Parallel branches and Map items are child runs and are only listed with
        ``include_children=True``.
        """
        return [
            run
            for run in self._runs.values()
            if (workflow_name is None or run.workflow_name == workflow_name)
            and (status is None or run.status == status)
            and (include_children or run.parent_id is None)
        ]

    def history_of(self, run_id: str) -> HistoryCursor:
        """Return a restartable cursor over a run's history entries."""
        return self.history.query(run_id)

    async def resume(self, run_id: str) -> Run:
        """Reload a run from the run store and continue it.

        Waits and retry backoffs pick up their original wake time. A run that was
        in the middle of a step re-executes that step, and a run suspended on a
        Parallel or Map state restarts the fan-out. Either way the interrupted
        attempt does not count against the retry policy.

        Raises:
            RunNotFoundError: If the run is neither loaded nor archived.
        """
        if run_id in self._runs:
            return self._runs[run_id]
        record = await self.run_store.load(run_id) if self.run_store is not None else None
        if record is None:
            raise RunNotFoundError(run_id)

        graph = self.registry.get_graph(record["workflow_name"], record["workflow_version"])
        run = Run.from_dict(record, graph)
        self._register(run)
        if run.is_terminal:
            self._done[run.id].set()
            return run

        if run.in_flight:
            # The interrupted attempt produced no result and is run again under the same number.
            run.in_flight = False
            run.attempts[run.current_state] = max(0, run.attempts.get(run.current_state, 0) - 1)

        if run.deadline is not None:
            self.scheduler.schedule_deadline(run.id, run.deadline)
        if run.resume_at is not None:
            self.scheduler.schedule_wake(run.id, run.resume_at)
        else:
            self._activate(run)
        logger.info("Resumed run %s of %s in state %s", run.id, run.workflow_name, run.current_state)
        return run

    async def recover(self) -> list[Run]:
        """Resume every top-level ``RUNNING`` run found in the run store."""
        if self.run_store is None:
            return []
        records = await self.run_store.list_records(status=str(RunStatus.RUNNING))
        return [await self.resume(record["id"]) for record in records if record.get("parent_id") is None]

    async def serve(self, poll_interval: float | None = None) -> None:
        """Tick the scheduler until :meth:`shutdown` is called."""
        interval = poll_interval or self.config.poll_interval
        self._stopping.clear()
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def shutdown(self) -> None:
        """Stop :meth:`serve` and cancel every task currently advancing a run.

        Interrupted runs stay ``RUNNING`` in the run store and can be resumed.
        """
        self._stopping.set()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # Run lifecycle

    def _resolve_graph(
        self,
        workflow: str | WorkflowGraph | WorkflowDefinition | Mapping[str, Any],
        version: str | None,
    ) -> WorkflowGraph:
        if isinstance(workflow, WorkflowGraph):
            return workflow
        if isinstance(workflow, WorkflowDefinition):
            return validate(workflow)
        if isinstance(workflow, Mapping):
            return validate(WorkflowDefinition.from_document(workflow))
        return self.registry.get_graph(workflow, version)

    def _register(self, run: Run) -> None:
        self._runs[run.id] = run
        self._idle[run.id] = asyncio.Event()
        self._idle[run.id].set()
        self._done[run.id] = asyncio.Event()

    def _new_run(
        self,
        graph: WorkflowGraph,
        data: Mapping[str, Any],
        *,
        run_id: str | None = None,
        parent: Run | None = None,
        index: int | None = None,
    ) -> Run:
        now = self.clock.now()
        if parent is not None:
            deadline = parent.deadline
        else:
            timeout = graph.timeout_seconds or self.config.default_run_timeout
            deadline = now + timedelta(seconds=timeout) if timeout else None

        run = Run(
            id=run_id or str(uuid.uuid4()),
            graph=graph,
            current_state=graph.start_at,
            context=snapshot(data),
            started_at=now,
            deadline=deadline,
            parent_id=parent.id if parent is not None else None,
            branch_index=index,
        )
        self._register(run)
        return run

    async def _start(self, run: Run) -> None:
        if run.deadline is not None and run.parent_id is None:
            self.scheduler.schedule_deadline(run.id, run.deadline)
        await self._record(run, HistoryEventType.RUN_STARTED, None, input=snapshot(run.context))
        await self._enter(run, run.graph.start_at, from_state=None)
        self._activate(run)

    def _activate(self, run: Run) -> None:
        """Make sure exactly one task advances ``run``."""
        if run.is_terminal:
            return
        if run.id in self._tasks:
            self._rearm.add(run.id)
            return
        self._idle[run.id].clear()
        self._tasks[run.id] = asyncio.create_task(self._drive(run), name=f"pipeline-run-{run.id}")

    async def _drive(self, run: Run) -> None:
        try:
            while True:
                self._rearm.discard(run.id)
                try:
                    await self._advance(run)
                except Exception as e:  # noqa: BLE001
                    logger.exception("Run %s crashed in state %s", run.id, run.current_state)
                    await self._finish(run, RunStatus.FAILED, error=RUNTIME_ERROR, cause=f"{type(e).__name__}: {e}")
                await self._persist(run)
                if run.is_terminal or run.id not in self._rearm:
                    break
        finally:
            self._tasks.pop(run.id, None)
            self._rearm.discard(run.id)
            self._idle[run.id].set()

    async def _advance(self, run: Run) -> None:
        """Execute states until the run suspends or finishes."""
        while run.status is RunStatus.RUNNING:
            if run.cancel_requested:
                cause = str(CancellationError(run.id, run.cancel_reason))
                await self._finish(run, RunStatus.CANCELLED, cause=cause)
                return
            if run.deadline is not None and self.clock.now() >= run.deadline:
                await self._finish(run, RunStatus.TIMED_OUT, error=TIMEOUT_ERROR, cause=str(ExecutionTimeoutError(run.id)))
                return
            if run.fanout is not None:
                if not await self._progress_fanout(run):
                    return
                continue
            if run.resume_at is not None:
                return
            if await self._execute(run, run.graph.get_state(run.current_state)):
                return

    async def _execute(self, run: Run, state: StateDefinition) -> bool:
        """Execute one state. Returns whether the run is now suspended."""
        if isinstance(state, TaskState):
            return await self._run_task(run, state)
        if isinstance(state, ChoiceState):
            target = state.select(run.context)
            await self._record(run, HistoryEventType.STEP_SUCCEEDED, state.id, outcome=Outcome.ok({"next": target}))
            await self._enter(run, target, from_state=state.id)
            return False
        if isinstance(state, WaitState):
            return await self._run_wait(run, state)
        if isinstance(state, (ParallelState, MapState)):
            return await self._start_fanout(run, state)
        if isinstance(state, PassState):
            if state.result is not None:
                merge_output(run.context, copy.deepcopy(state.result), state.result_path)
            await self._record(run, HistoryEventType.STEP_SUCCEEDED, state.id, outcome=Outcome.ok(state.result))
            await self._follow(run, state)
            return False
        if isinstance(state, FailState):
            await self._finish(run, RunStatus.FAILED, error=state.error, cause=state.cause)
            return False
        if isinstance(state, SucceedState):
            await self._finish(run, RunStatus.SUCCEEDED)
            return False
        raise InvalidStateError([f"State '{state.id}' has unsupported type {type(state).__name__}"])

    async def _enter(self, run: Run, state_id: str, from_state: str | None) -> None:
        run.current_state = state_id
        run.state_input = snapshot(run.context)
        run.attempts[state_id] = 0
        await self._record(run, HistoryEventType.STATE_ENTERED, state_id, input=run.state_input)
        self._emit_transition(run, from_state, state_id)

    async def _follow(self, run: Run, state: TransitionState) -> None:
        if run.cancel_requested:
            return
        if state.end or state.next is None:
            await self._finish(run, RunStatus.SUCCEEDED)
        else:
            await self._enter(run, state.next, from_state=state.id)

    async def _finish(
        self,
        run: Run,
        status: RunStatus,
        *,
        error: str | None = None,
        cause: str | None = None,
    ) -> None:
        if run.is_terminal:
            return
        state_id = run.current_state
        attempt = run.attempts.get(state_id, 0)
        run.status = status
        run.completed_at = self.clock.now()
        run.error = error
        run.cause = cause
        run.in_flight = False
        run.resume_at = None
        self.scheduler.cancel(run.id)
        self.scheduler.clear_deadline(run.id)
        fanout, run.fanout = run.fanout, None

        if status is RunStatus.SUCCEEDED:
            outcome = Outcome.ok(snapshot(run.context))
        else:
            outcome = Outcome.failure(
                error or _STATUS_ERRORS[status],
                cause,
                payload={"state": state_id, "attempt": attempt},
            )
        await self._record(run, _TERMINAL_EVENTS[status], state_id, attempt=attempt, outcome=outcome)
        self._emit_transition(run, state_id, None)
        if status in (RunStatus.FAILED, RunStatus.TIMED_OUT):
            self.sink.on_error(
                ErrorEvent(
                    run_id=run.id,
                    timestamp=run.completed_at,
                    state_id=state_id,
                    error=outcome.error or RUNTIME_ERROR,
                    cause=cause,
                    fatal=True,
                )
            )

        if fanout is not None:
            await self._cancel_children(fanout, reason=f"parent run {run.id} finished as {status}")
        self._done[run.id].set()
        if run.parent_id is not None:
            self._child_finished(run)

    # Task, Wait and failure handling

    async def _run_task(self, run: Run, state: TaskState) -> bool:
        attempt = run.attempts.get(state.id, 0) + 1
        run.attempts[state.id] = attempt
        # Every attempt starts from the snapshot taken on entry.
        run.context = snapshot(run.state_input or {})
        parameters = resolve_parameters(state.parameters, run.context)

        timeout = state.timeout_seconds or self.config.default_task_timeout
        run_bound = False
        if run.deadline is not None:
            remaining = (run.deadline - self.clock.now()).total_seconds()
            if remaining < timeout:
                timeout, run_bound = remaining, True
        if timeout <= 0:
            await self._finish(run, RunStatus.TIMED_OUT, error=TIMEOUT_ERROR, cause=str(ExecutionTimeoutError(run.id)))
            return False

        run.in_flight = True
        await self._persist(run)
        try:
            result = await self._invoke(run, state, parameters, timeout)
        except asyncio.TimeoutError:
            run.in_flight = False
            timeout_error = ExecutionTimeoutError(run.id, None if run_bound else state.id)
            await self._record(
                run,
                HistoryEventType.STEP_FAILED,
                state.id,
                attempt=attempt,
                input=run.state_input,
                outcome=Outcome.failure(TIMEOUT_ERROR, str(timeout_error)),
            )
            await self._finish(run, RunStatus.TIMED_OUT, error=TIMEOUT_ERROR, cause=str(timeout_error))
            return False
        except Exception as e:  # noqa: BLE001
            result = JobResult.failure(type(e).__name__, str(e))
        run.in_flight = False

        if not result.success:
            return await self._fail_state(run, state, result.error or RUNTIME_ERROR, result.cause, attempt)

        merge_output(run.context, result.output, state.result_path)
        await self._record(
            run,
            HistoryEventType.STEP_SUCCEEDED,
            state.id,
            attempt=attempt,
            input=run.state_input,
            outcome=Outcome.ok(result.output),
        )
        await self._follow(run, state)
        return False

    async def _invoke(
        self,
        run: Run,
        state: TaskState,
        parameters: dict[str, Any],
        timeout: float,
    ) -> JobResult:
        """Invoke the job behind ``state``, bounded in real time and on the engine clock.

        The clock bound is a scheduler deadline, so a simulated clock can expire
        the step through :meth:`tick`.

        Raises:
            asyncio.TimeoutError: If either bound passes before the job returns.
        """
        key = _step_key(run.id)
        expired = self._step_timers[key] = asyncio.Event()
        self.scheduler.schedule_deadline(key, self.clock.now() + timedelta(seconds=timeout))
        job = asyncio.ensure_future(
            self.job_runner.invoke(state.resource_name, parameters, snapshot(run.context), run_id=run.id)
        )
        timer = asyncio.ensure_future(expired.wait())
        try:
            done, _ = await asyncio.wait({job, timer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            job.cancel()
            raise
        finally:
            timer.cancel()
            self.scheduler.clear_deadline(key)
            self._step_timers.pop(key, None)

        if job in done:
            return job.result()
        await self._cancel_job(run, state)
        job.cancel()
        raise asyncio.TimeoutError

    async def _fail_state(
        self,
        run: Run,
        state: RecoverableState,
        error: str,
        cause: str | None,
        attempt: int,
    ) -> bool:
        """Apply catchers, then the retry policy, then fail the run.

        Returns:
            Whether the run is suspended waiting for a retry.
        """
        failure = StepExecutionError(state.id, error, cause, attempt)
        await self._record(
            run,
            HistoryEventType.STEP_FAILED,
            state.id,
            attempt=attempt,
            input=run.state_input,
            outcome=Outcome.failure(error, cause, payload=failure.to_payload()),
        )
        self.sink.on_error(
            ErrorEvent(run_id=run.id, timestamp=self.clock.now(), state_id=state.id, error=error, cause=cause)
        )
        if run.cancel_requested:
            return False

        for catcher in state.catchers:
            if catcher.matches(error):
                run.context = snapshot(run.state_input or {})
                set_path(run.context, catcher.result_path, failure.to_payload())
                await self._record(
                    run,
                    HistoryEventType.ERROR_CAUGHT,
                    state.id,
                    attempt=attempt,
                    outcome=Outcome.failure(error, cause, payload={"next": catcher.next}),
                )
                await self._enter(run, catcher.next, from_state=state.id)
                return False

        policy = state.retry
        if policy is not None and policy.matches(error) and attempt <= policy.max_attempts:
            delay = policy.delay_for(attempt)
            run.resume_at = self.clock.now() + timedelta(seconds=delay)
            await self._record(run, HistoryEventType.RETRY_SCHEDULED, state.id, attempt=attempt, delay_seconds=delay)
            self.scheduler.schedule_wake(run.id, run.resume_at)
            return True

        await self._finish(run, RunStatus.FAILED, error=error, cause=cause)
        return False

    async def _run_wait(self, run: Run, state: WaitState) -> bool:
        if run.resumed:
            run.resumed = False
            await self._record(run, HistoryEventType.WAIT_RESUMED, state.id)
            await self._follow(run, state)
            return False

        try:
            resume_at = self._resume_time(run, state)
        except (TypeError, ValueError) as e:
            await self._record(
                run,
                HistoryEventType.STEP_FAILED,
                state.id,
                input=run.state_input,
                outcome=Outcome.failure(RUNTIME_ERROR, str(e)),
            )
            await self._finish(run, RunStatus.FAILED, error=RUNTIME_ERROR, cause=str(e))
            return False

        delay = max(0.0, (resume_at - self.clock.now()).total_seconds())
        run.resume_at = resume_at
        await self._record(run, HistoryEventType.WAIT_SCHEDULED, state.id, delay_seconds=delay)
        self.scheduler.schedule_wake(run.id, resume_at)
        return True

    def _resume_time(self, run: Run, state: WaitState) -> datetime:
        now = self.clock.now()
        if state.seconds is not None:
            return now + timedelta(seconds=state.seconds)

        if state.seconds_path is not None:
            seconds = get_path(run.context, state.seconds_path)
            if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
                msg = f"Wait seconds at '{state.seconds_path}' is not a number: {seconds!r}"
                raise ValueError(msg)
            return now + timedelta(seconds=max(0.0, float(seconds)))

        value = get_path(run.context, state.timestamp_path or "")
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, str):
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        else:
            msg = f"Wait timestamp at '{state.timestamp_path}' is not a timestamp: {value!r}"
            raise ValueError(msg)
        return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)

    # Parallel and Map fan-out

    async def _start_fanout(self, run: Run, state: ParallelState | MapState) -> bool:
        attempt = run.attempts.get(state.id, 0) + 1
        run.attempts[state.id] = attempt
        run.context = snapshot(run.state_input or {})

        if isinstance(state, ParallelState):
            fanout = FanOut(
                state_id=state.id,
                kind=StateType.PARALLEL,
                inputs=[snapshot(run.context) for _ in state.branches],
            )
        else:
            items = get_path(run.context, state.items_path)
            if not isinstance(items, list):
                cause = f"Map items at '{state.items_path}' is not a list"
                return await self._fail_state(run, state, RUNTIME_ERROR, cause, attempt)
            fanout = FanOut(
                state_id=state.id,
                kind=StateType.MAP,
                inputs=[
                    copy.deepcopy(dict(item)) if isinstance(item, Mapping) else {"value": copy.deepcopy(item)}
                    for item in items
                ],
                max_concurrency=state.max_concurrency or self.config.default_max_concurrency,
                tolerated_failures=state.tolerated_failure_count,
                fail_fast=True,
            )

        run.fanout = fanout
        run.in_flight = True
        await self._record(
            run,
            HistoryEventType.BRANCHES_STARTED,
            state.id,
            attempt=attempt,
            input=run.state_input,
            outcome=Outcome.ok({"count": len(fanout.inputs)}),
        )
        return not await self._progress_fanout(run)

    async def _progress_fanout(self, run: Run) -> bool:
        """Launch pending children and join finished ones.

        Returns:
            Whether the caller should keep advancing the run.
        """
        fanout = run.fanout
        assert fanout is not None
        state = run.graph.get_state(fanout.state_id)
        assert isinstance(state, (ParallelState, MapState))
        attempt = run.attempts.get(state.id, 0)

        failed = fanout.failed_indexes()
        if fanout.fail_fast and len(failed) > fanout.tolerated_failures:
            return await self._fail_fanout(run, state, fanout, failed[0], attempt)

        await self._launch_children(run, state, fanout)
        if not fanout.complete:
            return False

        failed = fanout.failed_indexes()
        if len(failed) > fanout.tolerated_failures:
            # Declaration order decides which failure is reported.
            return await self._fail_fanout(run, state, fanout, failed[0], attempt)

        run.fanout = None
        run.in_flight = False
        outputs = [
            outcome.payload if outcome.success else outcome.to_dict()
            for outcome in (fanout.outcomes[index] for index in range(len(fanout.inputs)))
        ]
        await self._record(
            run,
            HistoryEventType.BRANCHES_COMPLETED,
            state.id,
            attempt=attempt,
            outcome=Outcome.ok(outputs),
        )
        set_path(run.context, state.result_path or state.id, outputs)
        await self._follow(run, state)
        return True

    async def _fail_fanout(
        self,
        run: Run,
        state: ParallelState | MapState,
        fanout: FanOut,
        index: int,
        attempt: int,
    ) -> bool:
        run.fanout = None
        run.in_flight = False
        await self._cancel_children(fanout, reason=f"state {state.id} failed")
        outcome = fanout.outcomes[index]
        error = outcome.error or RUNTIME_ERROR
        await self._record(
            run,
            HistoryEventType.BRANCHES_COMPLETED,
            state.id,
            attempt=attempt,
            outcome=Outcome.failure(error, outcome.cause, payload={"index": index, "failed": fanout.failed_indexes()}),
        )
        return not await self._fail_state(run, state, error, outcome.cause, attempt)

    async def _launch_children(self, run: Run, state: ParallelState | MapState, fanout: FanOut) -> None:
        graphs = run.graph.branches(state.id)
        limit = fanout.max_concurrency or len(fanout.inputs)
        attempt = run.attempts.get(state.id, 0)
        while fanout.next_index < len(fanout.inputs) and len(fanout.running) < limit:
            index = fanout.next_index
            fanout.next_index += 1
            graph = graphs[index] if fanout.kind is StateType.PARALLEL else graphs[0]
            child = self._new_run(
                graph,
                fanout.inputs[index],
                run_id=f"{run.id}:{state.id}:{attempt}:{index}",
                parent=run,
                index=index,
            )
            fanout.child_ids[index] = child.id
            await self._start(child)

    def _child_finished(self, child: Run) -> None:
        parent = self._runs.get(child.parent_id or "")
        if parent is None or parent.is_terminal or parent.fanout is None or child.branch_index is None:
            return
        fanout = parent.fanout
        if fanout.child_ids.get(child.branch_index) != child.id:
            return
        if child.status is RunStatus.SUCCEEDED:
            fanout.outcomes[child.branch_index] = Outcome.ok(snapshot(child.context))
        else:
            fanout.outcomes[child.branch_index] = Outcome.failure(
                child.error or _STATUS_ERRORS[child.status],
                child.cause,
            )
        self._activate(parent)

    async def _cancel_children(self, fanout: FanOut, reason: str) -> None:
        for child_id in fanout.child_ids.values():
            child = self._runs[child_id]
            if not child.is_terminal:
                await self._request_cancel(child, reason)

    # Cancellation

    async def _request_cancel(self, run: Run, reason: str | None) -> None:
        run.cancel_requested = True
        run.cancel_reason = reason
        if run.id in self._tasks:
            state = run.graph.get_state(run.current_state)
            if isinstance(state, TaskState):
                await self._cancel_job(run, state)
            return
        self.scheduler.cancel(run.id)
        run.resume_at = None
        self._activate(run)

    async def _cancel_job(self, run: Run, state: TaskState) -> None:
        try:
            await self.job_runner.cancel(run.id, state.resource_name)
        except Exception:  # noqa: BLE001
            logger.warning("Job runner could not cancel %s for run %s", state.resource_name, run.id, exc_info=True)

    # History, persistence and observability

    async def _record(
        self,
        run: Run,
        event: HistoryEventType,
        state_id: str | None,
        **fields: Any,
    ) -> None:
        entry = HistoryEntry(
            run_id=run.id,
            sequence=run.next_sequence(),
            state_id=state_id,
            event=event,
            timestamp=self.clock.now(),
            **fields,
        )
        try:
            await self.history.append(entry)
        except PersistenceError as e:
            self._degrade(run, state_id, e)

    async def _persist(self, run: Run) -> None:
        if self.run_store is None:
            return
        try:
            await self.run_store.save(run)
        except PersistenceError as e:
            self._degrade(run, run.current_state, e)

    def _degrade(self, run: Run, state_id: str | None, error: PersistenceError) -> None:
        run.degraded = True
        logger.warning("Run %s continues in degraded mode: %s", run.id, error)
        self.sink.on_error(
            ErrorEvent(
                run_id=run.id,
                timestamp=self.clock.now(),
                state_id=state_id,
                error=type(error).__name__,
                cause=str(error),
            )
        )

    def _emit_transition(self, run: Run, from_state: str | None, to_state: str | None) -> None:
        self.sink.on_transition(
            TransitionEvent(
                run_id=run.id,
                timestamp=self.clock.now(),
                from_state=from_state,
                to_state=to_state,
                status=run.status,
            )
        )
