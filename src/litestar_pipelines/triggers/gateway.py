"""Event trigger gateway.

The gateway turns inbound events and schedule ticks into start requests. Matching
and deduplication happen in :meth:`TriggerGateway.submit`, which only enqueues;
starting runs happens when the queue is drained, so a burst of events never
waits on the engine.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
import uuid
from typing import TYPE_CHECKING

from litestar_pipelines.config import GatewayConfig
from litestar_pipelines.exceptions import (
    TriggerConfigurationError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from litestar_pipelines.triggers.rules import SCHEDULE_SOURCE, Event, StartRequest

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from litestar_pipelines.core.models import Run
    from litestar_pipelines.engine.clock import Clock
    from litestar_pipelines.engine.local import ExecutionEngine
    from litestar_pipelines.triggers.rules import TriggerRule

__all__ = ["TriggerGateway"]

logger = logging.getLogger(__name__)


class TriggerGateway:
    """Matches events against trigger rules and queues workflow starts.

    Attributes:
        engine: Engine that receives start requests.
        clock: Clock used for schedule ticks and the deduplication window.
        config: Gateway tunables.

    Example:
        >>> gateway = TriggerGateway(engine, [TriggerRule(name="on-upload", workflow="ingest", event_pattern={"source": "storage"})])
        >>> run_ids = await gateway.submit(Event(id="evt-1", source="storage", detail={"key": "raw/a.csv"}))
        >>> runs = await gateway.drain()
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        rules: Iterable[TriggerRule] = (),
        *,
        clock: Clock | None = None,
        config: GatewayConfig | None = None,
    ) -> None:
        self.engine = engine
        self.clock = clock if clock is not None else engine.clock
        self.config = config if config is not None else GatewayConfig()
        self._rules: dict[str, TriggerRule] = {}
        self._next_fire: dict[str, datetime] = {}
        self._seen: dict[tuple[str, str], datetime] = {}
        self._queue: asyncio.Queue[StartRequest] = asyncio.Queue(maxsize=self.config.queue_maxsize)
        self._tasks: list[asyncio.Task[None]] = []
        for rule in rules:
            self.add_rule(rule)

    @property
    def rules(self) -> list[TriggerRule]:
        return list(self._rules.values())

    @property
    def pending(self) -> int:
        """Number of queued start requests."""
        return self._queue.qsize()

    def add_rule(self, rule: TriggerRule) -> None:
        """Register a rule. Schedule rules first fire after the current time.

        Raises:
            TriggerConfigurationError: If a rule with the same name exists.
        """
        if rule.name in self._rules:
            msg = f"Trigger rule '{rule.name}' is already registered"
            raise TriggerConfigurationError(msg)
        self._rules[rule.name] = rule
        next_fire = rule.next_fire_after(self.clock.now())
        if next_fire is not None:
            self._next_fire[rule.name] = next_fire

    def remove_rule(self, name: str) -> None:
        self._rules.pop(name, None)
        self._next_fire.pop(name, None)

    def next_fire(self, name: str) -> datetime | None:
        """Next firing time of a schedule rule."""
        return self._next_fire.get(name)

    async def submit(self, event: Event) -> list[str]:
        """Match ``event`` against every rule and queue a start for each match.

        A ``(event id, rule name)`` pair seen within the deduplication window is
        skipped, so redelivered events do not start a workflow twice.

        Returns:
            Run ids allocated for the queued starts.
        """
        now = self.clock.now()
        self._forget_before(now)
        run_ids = []
        for rule in self._rules.values():
            if not rule.matches(event):
                continue
            key = (event.id, rule.name)
            if key in self._seen:
                logger.debug("Skipping duplicate event %s for rule %s", event.id, rule.name)
                continue
            self._seen[key] = now

            run_id = str(uuid.uuid4())
            initial = copy.deepcopy(rule.input)
            initial["event"] = event.as_document()
            await self._queue.put(
                StartRequest(run_id=run_id, workflow=rule.workflow, input=initial, rule=rule.name, event_id=event.id)
            )
            run_ids.append(run_id)
        return run_ids

    async def tick(self) -> list[str]:
        """Submit a schedule event for every schedule rule that is due.

        Missed occurrences are coalesced: a rule fires at most once per tick.

        Returns:
            Run ids allocated for the queued starts.
        """
        now = self.clock.now()
        run_ids = []
        for name, fire_at in list(self._next_fire.items()):
            if fire_at > now:
                continue
            rule = self._rules[name]
            self._next_fire[name] = rule.next_fire_after(now)  # type: ignore[assignment]
            event = Event(
                id=f"{name}@{fire_at:%Y-%m-%dT%H:%MZ}",
                source=SCHEDULE_SOURCE,
                detail={"rule": name, "scheduled_time": fire_at.isoformat()},
                time=fire_at,
            )
            run_ids.extend(await self.submit(event))
        return run_ids

    async def drain(self) -> list[Run]:
        """Start every queued request now and return the started runs."""
        runs = []
        while not self._queue.empty():
            run = await self._dispatch(self._queue.get_nowait())
            if run is not None:
                runs.append(run)
        return runs

    def start(self, poll_interval: float | None = None) -> None:
        """Start the background worker and the schedule ticker."""
        if self._tasks:
            return
        interval = poll_interval or self.engine.config.poll_interval
        self._tasks = [
            asyncio.create_task(self._work(), name="pipeline-gateway-worker"),
            asyncio.create_task(self._tick_forever(interval), name="pipeline-gateway-ticker"),
        ]

    async def stop(self) -> None:
        """Stop the background tasks. Queued requests stay queued."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _work(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                await self._dispatch(request)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Rule %s failed to start %s for event %s", request.rule, request.workflow, request.event_id
                )

    async def _tick_forever(self, interval: float) -> None:
        while True:
            try:
                await self.tick()
            except Exception:  # noqa: BLE001
                logger.exception("Schedule tick failed")
            await asyncio.sleep(interval)

    async def _dispatch(self, request: StartRequest) -> Run | None:
        try:
            return await self.engine.start_run(request.workflow, request.input, run_id=request.run_id)
        except (WorkflowNotFoundError, WorkflowValidationError) as e:
            logger.error("Rule %s could not start %s for event %s: %s", request.rule, request.workflow, request.event_id, e)
            return None
        finally:
            self._queue.task_done()

    def _forget_before(self, now: datetime) -> None:
        window = self.config.dedup_window
        for key, seen_at in list(self._seen.items()):
            if (now - seen_at).total_seconds() < window:
                break
            del self._seen[key]
