"""HealthMonitor — point-in-time queue and processing health."""

from __future__ import annotations

import datetime
from statistics import fmean

from src.core.config import HealthConfig
from src.core.types import Clock, HealthSnapshot, QueueStatus, utc_now
from src.monitor.recorder import ALERTS_ERROR, ALERTS_PROCESSED, PROCESSING_TIME_MS
from src.storage.base import Store


class HealthMonitor:
    """Derives a HealthSnapshot from queue state and recent metrics.

    Queue figures cover items created inside the window (24h by default).
    Throughput and error rate always use the trailing rate window (1h),
    even when the requested window is shorter; the average processing
    time uses the requested window.  Missing data yields zeros, never an
    error.
    """

    def __init__(
        self,
        store: Store,
        config: HealthConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        from src.core.config import get_settings

        self._store = store
        self._config = config or get_settings().health
        self._clock = clock

    @property
    def default_window(self) -> datetime.timedelta:
        return datetime.timedelta(hours=self._config.window_hours)

    def snapshot(self, window: datetime.timedelta | None = None) -> HealthSnapshot:
        now = self._clock()
        since = now - (window or self.default_window)
        rate_secs = self._config.rate_window_secs
        rate_since = now - datetime.timedelta(seconds=rate_secs)

        counts = dict.fromkeys(QueueStatus, 0)
        oldest_pending: datetime.datetime | None = None
        for item in self._store.list_items():
            if item.created_at <= since:
                continue
            counts[item.status] += 1
            if item.status == QueueStatus.PENDING and (
                oldest_pending is None or item.scheduled_at < oldest_pending
            ):
                oldest_pending = item.scheduled_at

        processed = 0.0
        errors = 0.0
        durations: list[float] = []
        # The rate window is independent of the snapshot window.
        for metric in self._store.list_metrics(since=min(since, rate_since)):
            if metric.name == PROCESSING_TIME_MS:
                if metric.created_at > since:
                    durations.append(metric.value)
            elif metric.created_at > rate_since:
                if metric.name == ALERTS_PROCESSED:
                    processed += metric.value
                elif metric.name == ALERTS_ERROR:
                    errors += metric.value

        lag = 0
        if oldest_pending is not None:
            lag = max(0, int((now - oldest_pending).total_seconds()))

        return HealthSnapshot(
            queue_size=counts[QueueStatus.PENDING],
            processing_rate=processed / rate_secs if rate_secs > 0 else 0.0,
            error_rate=errors / processed if processed else 0.0,
            avg_processing_time_ms=fmean(durations) if durations else 0.0,
            queue_lag_seconds=lag,
            processing_count=counts[QueueStatus.PROCESSING],
            failed_count=counts[QueueStatus.FAILED],
            completed_count=counts[QueueStatus.COMPLETED],
            generated_at=now,
        )
