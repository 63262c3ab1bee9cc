"""EvaluationQueue — enqueue evaluations and apply worker-reported outcomes."""

from __future__ import annotations

import datetime

import structlog

from src.core.config import QueueConfig
from src.core.exceptions import (
    ExhaustedRetriesError,
    InvalidTransitionError,
    NotFoundError,
)
from src.core.types import (
    Clock,
    EvaluationKind,
    Outcome,
    PermanentFailure,
    QueueItem,
    QueueStatus,
    Success,
    TransientFailure,
    utc_now,
)
from src.registry.alerts import AlertRegistry
from src.storage.base import Store

logger = structlog.stdlib.get_logger()


class EvaluationQueue:
    """Owns queue item creation and the post-claim lifecycle.

    Items move ``pending → processing`` only through the lease manager.
    From ``processing`` a reported outcome moves them to ``completed``,
    ``failed``, or back to ``pending`` when a transient failure still has
    attempts left.  Enqueueing never deduplicates: two pending items for the
    same alert are allowed.
    """

    def __init__(
        self,
        store: Store,
        registry: AlertRegistry,
        config: QueueConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        from src.core.config import get_settings

        self._store = store
        self._registry = registry
        self._config = config or get_settings().queue
        self._clock = clock

    def enqueue(
        self,
        alert_id: str,
        evaluation_kind: EvaluationKind = EvaluationKind.SCHEDULED,
        priority: int | None = None,
        scheduled_at: datetime.datetime | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """Insert a pending evaluation for *alert_id*. Returns the item id."""
        if not self._registry.exists(alert_id):
            raise NotFoundError(f"Alert {alert_id} not found")

        now = self._clock()
        item = QueueItem(
            alert_id=alert_id,
            evaluation_kind=evaluation_kind,
            priority=self._config.default_priority if priority is None else priority,
            scheduled_at=scheduled_at or now,
            created_at=now,
            updated_at=now,
            max_attempts=max_attempts or self._config.max_attempts,
        )
        self._store.insert_item(item)
        logger.debug(
            "evaluation_enqueued",
            item_id=item.id,
            alert_id=alert_id,
            kind=evaluation_kind,
            priority=item.priority,
        )
        return item.id

    def get(self, item_id: str) -> QueueItem:
        item = self._store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Queue item {item_id} not found")
        return item

    def items_for_alert(self, alert_id: str) -> list[QueueItem]:
        return self._store.list_items(alert_id=alert_id)

    def report_outcome(
        self, item_id: str, worker_id: str, outcome: Outcome
    ) -> QueueItem:
        """Apply a worker's outcome to a processing item it owns.

        Raises:
            NotFoundError: the item does not exist.
            InvalidTransitionError: the item is not processing, or is owned
                by a different worker.
            ExhaustedRetriesError: a transient failure arrived with no
                attempts left.  The item has already been marked failed.
        """
        exhausted = False

        def _transition(current: QueueItem) -> QueueItem:
            nonlocal exhausted
            if current.status != QueueStatus.PROCESSING:
                raise InvalidTransitionError(
                    f"Queue item {item_id} is {current.status}, not processing"
                )
            if current.worker_id != worker_id:
                raise InvalidTransitionError(
                    f"Queue item {item_id} is owned by {current.worker_id!r},"
                    f" not {worker_id!r}"
                )

            now = self._clock()
            if isinstance(outcome, Success):
                return current.model_copy(update={
                    "status": QueueStatus.COMPLETED,
                    "result": outcome.result,
                    "error_message": None,
                    "processed_at": now,
                    "updated_at": now,
                })
            if isinstance(outcome, PermanentFailure):
                return current.model_copy(update={
                    "status": QueueStatus.FAILED,
                    "error_message": outcome.message,
                    "processed_at": now,
                    "updated_at": now,
                })
            if isinstance(outcome, TransientFailure):
                if current.attempts < current.max_attempts:
                    return current.model_copy(update={
                        "status": QueueStatus.PENDING,
                        "worker_id": None,
                        "claimed_at": None,
                        "error_message": outcome.message,
                        "updated_at": now,
                    })
                exhausted = True
                return current.model_copy(update={
                    "status": QueueStatus.FAILED,
                    "error_message": outcome.message,
                    "processed_at": now,
                    "updated_at": now,
                })
            raise TypeError(f"Unsupported outcome: {outcome!r}")

        updated = self._store.update_item(item_id, _transition)
        logger.info(
            "evaluation_outcome",
            item_id=item_id,
            worker_id=worker_id,
            status=updated.status,
            attempts=updated.attempts,
            max_attempts=updated.max_attempts,
        )
        if exhausted:
            logger.warning(
                "evaluation_retries_exhausted",
                item_id=item_id,
                alert_id=updated.alert_id,
                error=updated.error_message,
            )
            raise ExhaustedRetriesError(updated)
        return updated
