"""EvaluationScheduler — periodic enqueueing of scheduled alert evaluations."""

from __future__ import annotations

import asyncio
import datetime

import structlog

from src.core.config import SchedulerConfig
from src.core.exceptions import NotFoundError
from src.core.types import Alert, Clock, EvaluationKind, utc_now
from src.evaluation.queue import EvaluationQueue
from src.registry.alerts import AlertRegistry

logger = structlog.stdlib.get_logger()


class EvaluationScheduler:
    """Enqueues one ``scheduled`` evaluation per active alert per window.

    An alert is due when no scheduled evaluation was enqueued for it within
    its ``evaluation_window_minutes``.  The last enqueue time is cached and,
    after a restart, recovered from the queue itself.

    Usage::

        scheduler = EvaluationScheduler(registry, queue)
        await scheduler.start()
        # ...
        await scheduler.stop()
    """

    def __init__(
        self,
        registry: AlertRegistry,
        queue: EvaluationQueue,
        config: SchedulerConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        from src.core.config import get_settings

        self._registry = registry
        self._queue = queue
        self._config = config or get_settings().scheduler
        self._clock = clock
        self._last_enqueued: dict[str, datetime.datetime] = {}
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._error_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def error_count(self) -> int:
        return self._error_count

    def is_due(self, alert: Alert, now: datetime.datetime) -> bool:
        last = self._last_enqueued.get(alert.id)
        if last is None:
            last = self._recover_last_enqueued(alert.id)
        return last is None or now - last >= alert.evaluation_window

    def tick(self) -> list[str]:
        """Enqueue every due active alert. Returns the new queue item ids."""
        now = self._clock()
        enqueued: list[str] = []
        active = self._registry.list_alerts(active_only=True)
        for alert in active:
            if not self.is_due(alert, now):
                continue
            try:
                item_id = self._queue.enqueue(
                    alert.id,
                    EvaluationKind.SCHEDULED,
                    priority=self._config.priority,
                    scheduled_at=now,
                )
            except NotFoundError:
                # Deleted between listing and enqueueing.
                self._last_enqueued.pop(alert.id, None)
                continue
            self._last_enqueued[alert.id] = now
            enqueued.append(item_id)

        # Forget alerts that are gone or inactive.
        active_ids = {a.id for a in active}
        for alert_id in [a for a in self._last_enqueued if a not in active_ids]:
            del self._last_enqueued[alert_id]

        if enqueued:
            logger.info("scheduler_tick", enqueued=len(enqueued), active_alerts=len(active))
        return enqueued

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("scheduler_started", interval=self._config.tick_interval_secs)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("scheduler_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception("scheduler_tick_error", error_count=self._error_count)

            try:
                await asyncio.sleep(self._config.tick_interval_secs)
            except asyncio.CancelledError:
                break

    def _recover_last_enqueued(self, alert_id: str) -> datetime.datetime | None:
        scheduled = [
            i.created_at
            for i in self._queue.items_for_alert(alert_id)
            if i.evaluation_kind == EvaluationKind.SCHEDULED
        ]
        if not scheduled:
            return None
        last = max(scheduled)
        self._last_enqueued[alert_id] = last
        return last
