"""Tests for HealthMonitor snapshots."""

from __future__ import annotations

import datetime

import pytest
from conftest import FakeClock, seed_alert

from src.core.config import HealthConfig
from src.core.types import QueueItem, QueueStatus
from src.monitor.health import HealthMonitor
from src.monitor.recorder import (
    ALERTS_ERROR,
    ALERTS_PROCESSED,
    PROCESSING_TIME_MS,
    MetricsRecorder,
)
from src.storage.memory import MemoryStore


@pytest.fixture()
def monitor(store: MemoryStore, clock: FakeClock) -> HealthMonitor:
    seed_alert(store)
    return HealthMonitor(store, config=HealthConfig(), clock=clock)


def _item(
    clock: FakeClock,
    status: QueueStatus = QueueStatus.PENDING,
    age: datetime.timedelta = datetime.timedelta(0),
) -> QueueItem:
    at = clock.now - age
    return QueueItem(alert_id="a", status=status, scheduled_at=at, created_at=at)


class TestSnapshot:
    def test_empty_store_is_all_zeros(self, monitor: HealthMonitor, clock: FakeClock) -> None:
        snap = monitor.snapshot()
        assert snap.queue_size == 0
        assert snap.processing_rate == 0.0
        assert snap.error_rate == 0.0
        assert snap.avg_processing_time_ms == 0.0
        assert snap.queue_lag_seconds == 0
        assert snap.processing_count == 0
        assert snap.failed_count == 0
        assert snap.completed_count == 0
        assert snap.generated_at == clock.now

    def test_counts_by_status(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        for status, n in (
            (QueueStatus.PENDING, 3),
            (QueueStatus.PROCESSING, 2),
            (QueueStatus.COMPLETED, 4),
            (QueueStatus.FAILED, 1),
        ):
            for _ in range(n):
                store.insert_item(_item(clock, status))

        snap = monitor.snapshot()
        assert snap.queue_size == 3
        assert snap.processing_count == 2
        assert snap.completed_count == 4
        assert snap.failed_count == 1

    def test_items_outside_window_ignored(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        store.insert_item(_item(clock, age=datetime.timedelta(hours=25)))
        store.insert_item(_item(clock, age=datetime.timedelta(hours=1)))
        assert monitor.snapshot().queue_size == 1
        assert monitor.snapshot(datetime.timedelta(hours=48)).queue_size == 2

    def test_queue_lag_from_oldest_pending(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        store.insert_item(_item(clock, age=datetime.timedelta(seconds=90)))
        store.insert_item(_item(clock, age=datetime.timedelta(seconds=30)))
        store.insert_item(
            _item(clock, QueueStatus.PROCESSING, age=datetime.timedelta(hours=2))
        )
        assert monitor.snapshot().queue_lag_seconds == 90

    def test_future_pending_has_no_negative_lag(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        store.insert_item(QueueItem(
            alert_id="a",
            created_at=clock.now,
            scheduled_at=clock.now + datetime.timedelta(minutes=10),
        ))
        assert monitor.snapshot().queue_lag_seconds == 0

    def test_rates_from_metrics(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        recorder = MetricsRecorder(store, clock=clock)
        # Outside the one-hour rate window, inside the 24h window.
        clock.advance(hours=-3)
        recorder.record(ALERTS_PROCESSED, 1000, "throughput")
        recorder.record(ALERTS_ERROR, 1000, "errors")
        recorder.record(PROCESSING_TIME_MS, 300, "processing_time", unit="ms")
        clock.advance(hours=3)
        recorder.record(ALERTS_PROCESSED, 3000, "throughput")
        recorder.record(ALERTS_PROCESSED, 600, "throughput")
        recorder.record(ALERTS_ERROR, 36, "errors")
        recorder.record(PROCESSING_TIME_MS, 100, "processing_time", unit="ms")

        snap = monitor.snapshot()

        assert snap.processing_rate == pytest.approx(1.0)
        assert snap.error_rate == pytest.approx(0.01)
        assert snap.avg_processing_time_ms == pytest.approx(200.0)

    def test_errors_without_processed_rate_is_zero(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        MetricsRecorder(store, clock=clock).record(ALERTS_ERROR, 5, "errors")
        assert monitor.snapshot().error_rate == 0.0

    def test_rates_use_rate_window_when_snapshot_window_is_shorter(
        self, store: MemoryStore, monitor: HealthMonitor, clock: FakeClock
    ) -> None:
        recorder = MetricsRecorder(store, clock=clock)
        clock.advance(minutes=-45)
        recorder.record(ALERTS_PROCESSED, 3600, "throughput")
        recorder.record(ALERTS_ERROR, 36, "errors")
        recorder.record(PROCESSING_TIME_MS, 900, "processing_time", unit="ms")
        clock.advance(minutes=45)
        recorder.record(PROCESSING_TIME_MS, 100, "processing_time", unit="ms")

        snap = monitor.snapshot(datetime.timedelta(minutes=30))

        assert snap.processing_rate == pytest.approx(1.0)
        assert snap.error_rate == pytest.approx(0.01)
        # Durations still honour the 30-minute window.
        assert snap.avg_processing_time_ms == pytest.approx(100.0)
