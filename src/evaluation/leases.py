"""WorkerLeaseManager — exclusive, lock-skipping batch assignment."""

from __future__ import annotations

import datetime

import structlog

from src.core.config import QueueConfig
from src.core.exceptions import NotFoundError
from src.core.types import Clock, QueueItem, QueueStatus, utc_now
from src.storage.base import Store

logger = structlog.stdlib.get_logger()

LEASE_EXPIRED_MESSAGE = "lease expired"


class WorkerLeaseManager:
    """Hands out pending work to workers.

    ``claim_batch`` selects eligible items (pending, due, attempts left) in
    ``(priority, scheduled_at)`` order and marks them processing for the
    caller in one step.  Concurrent claimers always receive disjoint batches
    and never wait on rows another claimer is holding.

    Usage::

        leases = WorkerLeaseManager(store)
        for item in leases.claim_batch(50, "worker-1"):
            ...
    """

    def __init__(
        self,
        store: Store,
        config: QueueConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        from src.core.config import get_settings

        self._store = store
        self._config = config or get_settings().queue
        self._clock = clock

    @property
    def lease_ttl(self) -> datetime.timedelta:
        return datetime.timedelta(seconds=self._config.lease_ttl_secs)

    def claim_batch(self, batch_size: int, worker_id: str) -> list[QueueItem]:
        """Claim up to *batch_size* items for *worker_id*."""
        if not worker_id:
            raise ValueError("worker_id is required")
        if batch_size <= 0:
            return []

        now = self._clock()

        def _eligible(item: QueueItem) -> bool:
            return item.scheduled_at <= now and item.attempts < item.max_attempts

        def _mark(item: QueueItem) -> QueueItem:
            return item.model_copy(update={
                "status": QueueStatus.PROCESSING,
                "worker_id": worker_id,
                "attempts": item.attempts + 1,
                "claimed_at": now,
                "updated_at": now,
            })

        claimed = self._store.claim_items(batch_size, _eligible, _mark)
        if claimed:
            logger.debug("batch_claimed", worker_id=worker_id, count=len(claimed))
        return claimed

    def reclaim_expired(
        self, lease_ttl: datetime.timedelta | None = None
    ) -> list[QueueItem]:
        """Release processing items whose lease has run out.

        Items with attempts left go back to pending; the rest fail with
        ``"lease expired"``.
        """
        ttl = lease_ttl if lease_ttl is not None else self.lease_ttl
        now = self._clock()
        cutoff = now - ttl

        reclaimed: list[QueueItem] = []
        for stale in self._store.list_items(status=QueueStatus.PROCESSING):
            if stale.claimed_at is None or stale.claimed_at > cutoff:
                continue
            expected_worker = stale.worker_id
            expected_claim = stale.claimed_at

            def _release(current: QueueItem) -> QueueItem:
                # The row may have moved on since it was listed.
                if (
                    current.status != QueueStatus.PROCESSING
                    or current.worker_id != expected_worker
                    or current.claimed_at != expected_claim
                ):
                    raise _LeaseMovedOn
                if current.attempts < current.max_attempts:
                    return current.model_copy(update={
                        "status": QueueStatus.PENDING,
                        "worker_id": None,
                        "claimed_at": None,
                        "error_message": LEASE_EXPIRED_MESSAGE,
                        "updated_at": now,
                    })
                return current.model_copy(update={
                    "status": QueueStatus.FAILED,
                    "error_message": LEASE_EXPIRED_MESSAGE,
                    "processed_at": now,
                    "updated_at": now,
                })

            try:
                updated = self._store.update_item(stale.id, _release)
            except (_LeaseMovedOn, NotFoundError):
                continue
            reclaimed.append(updated)
            logger.warning(
                "lease_expired",
                item_id=updated.id,
                worker_id=expected_worker,
                status=updated.status,
                attempts=updated.attempts,
            )
        return reclaimed


class _LeaseMovedOn(Exception):
    """The listed lease was reported or released before we could expire it."""
