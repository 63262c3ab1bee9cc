"""Tests for RetentionSweeper."""

from __future__ import annotations

import asyncio
import datetime

import pytest
from conftest import FakeClock, seed_alert

from src.core.config import RetentionConfig
from src.core.types import Metric, QueueItem, QueueStatus
from src.monitor.retention import (
    METRICS_CATEGORY,
    NOTHING_DELETED,
    QUEUE_CATEGORY,
    RetentionSweeper,
)
from src.storage.memory import MemoryStore


@pytest.fixture(autouse=True)
def _alert(store: MemoryStore) -> None:
    seed_alert(store)


@pytest.fixture()
def sweeper(store: MemoryStore, clock: FakeClock) -> RetentionSweeper:
    return RetentionSweeper(store, config=RetentionConfig(), clock=clock)


def _aged(clock: FakeClock, status: QueueStatus, days: float) -> QueueItem:
    at = clock.now - datetime.timedelta(days=days)
    return QueueItem(alert_id="a", status=status, scheduled_at=at, created_at=at)


class TestSweep:
    def test_nothing_to_delete(self, sweeper: RetentionSweeper) -> None:
        assert sweeper.sweep() == {NOTHING_DELETED: 0}
        assert sweeper.last_result == {NOTHING_DELETED: 0}

    def test_deletes_old_terminal_items_only(
        self, store: MemoryStore, sweeper: RetentionSweeper, clock: FakeClock
    ) -> None:
        old_done = _aged(clock, QueueStatus.COMPLETED, 31)
        old_failed = _aged(clock, QueueStatus.FAILED, 45)
        old_pending = _aged(clock, QueueStatus.PENDING, 60)
        old_processing = _aged(clock, QueueStatus.PROCESSING, 60)
        recent_done = _aged(clock, QueueStatus.COMPLETED, 29)
        for item in (old_done, old_failed, old_pending, old_processing, recent_done):
            store.insert_item(item)

        assert sweeper.sweep() == {QUEUE_CATEGORY: 2}

        remaining = {i.id for i in store.list_items()}
        assert remaining == {old_pending.id, old_processing.id, recent_done.id}

    def test_deletes_old_metrics(
        self, store: MemoryStore, sweeper: RetentionSweeper, clock: FakeClock
    ) -> None:
        old = Metric(
            name="alerts_processed",
            value=1,
            category="throughput",
            created_at=clock.now - datetime.timedelta(days=91),
        )
        new = Metric(
            name="alerts_processed",
            value=1,
            category="throughput",
            created_at=clock.now - datetime.timedelta(days=89),
        )
        store.append_metric(old)
        store.append_metric(new)

        assert sweeper.sweep() == {METRICS_CATEGORY: 1}
        assert store.list_metrics() == [new]

    def test_reports_both_categories(
        self, store: MemoryStore, sweeper: RetentionSweeper, clock: FakeClock
    ) -> None:
        store.insert_item(_aged(clock, QueueStatus.COMPLETED, 40))
        store.append_metric(Metric(
            name="m",
            value=1,
            category="c",
            created_at=clock.now - datetime.timedelta(days=100),
        ))
        assert sweeper.sweep() == {QUEUE_CATEGORY: 1, METRICS_CATEGORY: 1}

    def test_idempotent(
        self, store: MemoryStore, sweeper: RetentionSweeper, clock: FakeClock
    ) -> None:
        store.insert_item(_aged(clock, QueueStatus.FAILED, 40))
        assert sweeper.sweep() == {QUEUE_CATEGORY: 1}
        assert sweeper.sweep() == {NOTHING_DELETED: 0}

    def test_custom_horizons(self, store: MemoryStore, clock: FakeClock) -> None:
        sweeper = RetentionSweeper(
            store, config=RetentionConfig(queue_days=1, metrics_days=1), clock=clock
        )
        store.insert_item(_aged(clock, QueueStatus.COMPLETED, 2))
        assert sweeper.sweep() == {QUEUE_CATEGORY: 1}


class TestLoop:
    @pytest.mark.asyncio
    async def test_background_sweep(
        self, store: MemoryStore, clock: FakeClock
    ) -> None:
        store.insert_item(_aged(clock, QueueStatus.COMPLETED, 40))
        sweeper = RetentionSweeper(
            store, config=RetentionConfig(interval_secs=0.01), clock=clock
        )

        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.running
        assert store.list_items() == []
        assert sweeper.last_result == {NOTHING_DELETED: 0}
