"""RetentionSweeper — periodic purge of terminal queue items and old metrics."""

from __future__ import annotations

import asyncio
import datetime

import structlog

from src.core.config import RetentionConfig
from src.core.types import Clock, QueueItem, utc_now
from src.storage.base import Store

logger = structlog.stdlib.get_logger()

QUEUE_CATEGORY = "evaluation_queue"
METRICS_CATEGORY = "processing_metrics"
NOTHING_DELETED = "none"


class RetentionSweeper:
    """Deletes expired records and reports per-category counts.

    Only completed or failed queue items are eligible; pending and
    processing items are kept regardless of age.

    Usage::

        sweeper = RetentionSweeper(store)
        sweeper.sweep()            # {"evaluation_queue": 12} or {"none": 0}
        await sweeper.start()      # background loop
    """

    def __init__(
        self,
        store: Store,
        config: RetentionConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        from src.core.config import get_settings

        self._store = store
        self._config = config or get_settings().retention
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._last_result: dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> dict[str, int]:
        return dict(self._last_result)

    def sweep(self) -> dict[str, int]:
        now = self._clock()
        queue_cutoff = now - datetime.timedelta(days=self._config.queue_days)
        metrics_cutoff = now - datetime.timedelta(days=self._config.metrics_days)

        def _expired(item: QueueItem) -> bool:
            return item.status.is_terminal and item.created_at < queue_cutoff

        deleted = {
            QUEUE_CATEGORY: self._store.delete_items(_expired),
            METRICS_CATEGORY: self._store.delete_metrics(metrics_cutoff),
        }
        result = {category: n for category, n in deleted.items() if n > 0}
        if not result:
            result = {NOTHING_DELETED: 0}

        self._last_result = result
        logger.info("retention_sweep", **result)
        return result

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("retention_sweeper_started", interval=self._config.interval_secs)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("retention_sweeper_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("retention_sweep_error")

            try:
                await asyncio.sleep(self._config.interval_secs)
            except asyncio.CancelledError:
                break
