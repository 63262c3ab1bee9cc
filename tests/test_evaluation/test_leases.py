"""Tests for WorkerLeaseManager — eligibility, ordering, exclusivity, lease expiry."""

from __future__ import annotations

import datetime
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import FakeClock, make_alert

from src.core.config import QueueConfig
from src.core.types import EvaluationKind, QueueStatus, Success
from src.evaluation.leases import LEASE_EXPIRED_MESSAGE, WorkerLeaseManager
from src.evaluation.queue import EvaluationQueue
from src.registry.alerts import AlertRegistry
from src.storage.memory import MemoryStore


@pytest.fixture()
def queue(store: MemoryStore, registry: AlertRegistry, clock: FakeClock) -> EvaluationQueue:
    return EvaluationQueue(store, registry, config=QueueConfig(), clock=clock)


@pytest.fixture()
def leases(store: MemoryStore, clock: FakeClock) -> WorkerLeaseManager:
    return WorkerLeaseManager(store, config=QueueConfig(lease_ttl_secs=60), clock=clock)


# ── claim_batch ───────────────────────────────────────────────


class TestClaimBatch:
    def test_single_item_scenario(
        self, queue: EvaluationQueue, leases: WorkerLeaseManager, registry: AlertRegistry
    ) -> None:
        alert = make_alert(registry)
        item_id = queue.enqueue(alert.id, EvaluationKind.SCHEDULED, priority=5)

        batch = leases.claim_batch(1, "w1")

        assert len(batch) == 1
        assert batch[0].id == item_id
        assert batch[0].attempts == 1
        assert batch[0].status == QueueStatus.PROCESSING
        assert batch[0].worker_id == "w1"
        assert queue.get(item_id) == batch[0]

    def test_stamps_claim_time(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        queue.enqueue(make_alert(registry).id)
        clock.advance(seconds=5)
        (item,) = leases.claim_batch(1, "w1")
        assert item.claimed_at == clock.now
        assert item.updated_at == clock.now

    def test_orders_by_priority_then_scheduled_at(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        alert = make_alert(registry)
        t0 = clock.now
        late_p5 = queue.enqueue(alert.id, priority=5, scheduled_at=t0 - datetime.timedelta(minutes=1))
        early_p5 = queue.enqueue(alert.id, priority=5, scheduled_at=t0 - datetime.timedelta(minutes=9))
        p1 = queue.enqueue(alert.id, priority=1, scheduled_at=t0)
        p9 = queue.enqueue(alert.id, priority=9, scheduled_at=t0 - datetime.timedelta(hours=1))

        batch = leases.claim_batch(10, "w1")

        assert [i.id for i in batch] == [p1, early_p5, late_p5, p9]
        keys = [(i.priority, i.scheduled_at) for i in batch]
        assert keys == sorted(keys)

    def test_skips_future_items(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        alert = make_alert(registry)
        future = queue.enqueue(alert.id, scheduled_at=clock.now + datetime.timedelta(minutes=5))
        assert leases.claim_batch(10, "w1") == []

        clock.advance(minutes=5)
        assert [i.id for i in leases.claim_batch(10, "w1")] == [future]

    def test_never_returns_non_pending(
        self, queue: EvaluationQueue, leases: WorkerLeaseManager, registry: AlertRegistry
    ) -> None:
        alert = make_alert(registry)
        for _ in range(3):
            queue.enqueue(alert.id)
        first = leases.claim_batch(2, "w1")
        queue.report_outcome(first[0].id, "w1", Success())

        rest = leases.claim_batch(10, "w2")
        assert len(rest) == 1
        assert rest[0].id not in {i.id for i in first}

    def test_skips_items_without_attempts_left(
        self,
        store: MemoryStore,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
    ) -> None:
        alert = make_alert(registry)
        item_id = queue.enqueue(alert.id, max_attempts=1)
        # Simulate a pending row already at its bound (e.g. restored from an old journal).
        store.update_item(item_id, lambda i: i.model_copy(update={"attempts": 1}))
        assert leases.claim_batch(10, "w1") == []

    def test_respects_batch_size(
        self, queue: EvaluationQueue, leases: WorkerLeaseManager, registry: AlertRegistry
    ) -> None:
        alert = make_alert(registry)
        for _ in range(5):
            queue.enqueue(alert.id)
        assert len(leases.claim_batch(3, "w1")) == 3
        assert len(leases.claim_batch(3, "w2")) == 2

    def test_zero_batch(self, queue: EvaluationQueue, leases: WorkerLeaseManager, registry: AlertRegistry) -> None:
        queue.enqueue(make_alert(registry).id)
        assert leases.claim_batch(0, "w1") == []

    def test_worker_id_required(self, leases: WorkerLeaseManager) -> None:
        with pytest.raises(ValueError):
            leases.claim_batch(1, "")

    def test_concurrent_workers_get_disjoint_batches(
        self, queue: EvaluationQueue, leases: WorkerLeaseManager, registry: AlertRegistry
    ) -> None:
        alert = make_alert(registry)
        ids = {queue.enqueue(alert.id, priority=n % 3) for n in range(120)}
        barrier = threading.Barrier(6)

        def _worker(n: int) -> list[str]:
            barrier.wait()
            claimed: list[str] = []
            while batch := leases.claim_batch(5, f"w{n}"):
                keys = [(i.priority, i.scheduled_at) for i in batch]
                assert keys == sorted(keys)
                assert all(i.worker_id == f"w{n}" for i in batch)
                claimed.extend(i.id for i in batch)
            return claimed

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(_worker, range(6)))

        flat = [i for r in results for i in r]
        assert len(flat) == len(set(flat))
        assert set(flat) == ids
        assert all(queue.get(i).attempts == 1 for i in ids)


# ── reclaim_expired ───────────────────────────────────────────


class TestReclaimExpired:
    def test_fresh_leases_untouched(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        queue.enqueue(make_alert(registry).id)
        leases.claim_batch(1, "w1")
        clock.advance(seconds=30)
        assert leases.reclaim_expired() == []

    def test_expired_lease_returns_to_pending(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        item_id = queue.enqueue(make_alert(registry).id)
        leases.claim_batch(1, "crashed")
        clock.advance(seconds=61)

        (released,) = leases.reclaim_expired()

        assert released.id == item_id
        assert released.status == QueueStatus.PENDING
        assert released.worker_id is None
        assert released.attempts == 1
        assert released.error_message == LEASE_EXPIRED_MESSAGE
        (again,) = leases.claim_batch(1, "w2")
        assert again.attempts == 2

    def test_expired_lease_without_attempts_fails(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        queue.enqueue(make_alert(registry).id, max_attempts=1)
        leases.claim_batch(1, "crashed")
        clock.advance(minutes=5)

        (released,) = leases.reclaim_expired()

        assert released.status == QueueStatus.FAILED
        assert released.processed_at == clock.now

    def test_explicit_ttl(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        queue.enqueue(make_alert(registry).id)
        leases.claim_batch(1, "w1")
        clock.advance(seconds=10)
        assert len(leases.reclaim_expired(datetime.timedelta(seconds=5))) == 1

    def test_late_report_after_reclaim_is_rejected(
        self,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        registry: AlertRegistry,
        clock: FakeClock,
    ) -> None:
        from src.core.exceptions import InvalidTransitionError

        item_id = queue.enqueue(make_alert(registry).id)
        leases.claim_batch(1, "slow")
        clock.advance(minutes=2)
        leases.reclaim_expired()
        leases.claim_batch(1, "fast")

        with pytest.raises(InvalidTransitionError):
            queue.report_outcome(item_id, "slow", Success())
        assert queue.report_outcome(item_id, "fast", Success()).status == QueueStatus.COMPLETED
