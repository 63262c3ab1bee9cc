"""Abstract store — persistence seam for alerts, queue items, triggers, metrics and audit entries."""

from __future__ import annotations

import abc
import datetime
from collections.abc import Callable

from src.core.types import (
    ActivityEntry,
    ActivityType,
    Alert,
    Metric,
    QueueItem,
    QueueStatus,
    Trigger,
)

ItemPredicate = Callable[[QueueItem], bool]
ItemMutation = Callable[[QueueItem], QueueItem]
TriggerMutation = Callable[[Trigger], Trigger]
AlertMutation = Callable[[Alert], Alert]


class Store(abc.ABC):
    """Storage contract used by every component.

    Implementations guarantee:

    - ``claim_items`` is a single select-and-mark step.  Concurrent callers
      receive disjoint items, and rows held by another caller are skipped
      rather than waited on.
    - ``update_*`` run their mutation while holding the record, so no
      partially-applied update is ever observable.  A mutation that raises
      leaves the record untouched.
    - Persistence errors surface as ``StorageFailureError``.
    """

    # ── Alerts ──────────────────────────────────────────────────

    @abc.abstractmethod
    def put_alert(self, alert: Alert) -> None:
        """Insert a new alert."""

    @abc.abstractmethod
    def get_alert(self, alert_id: str) -> Alert | None:
        """Return the alert or None."""

    @abc.abstractmethod
    def list_alerts(self) -> list[Alert]:
        """Return all alerts."""

    @abc.abstractmethod
    def update_alert(self, alert_id: str, mutate: AlertMutation) -> Alert:
        """Apply *mutate* to the stored alert. Raises NotFoundError."""

    @abc.abstractmethod
    def delete_alert(self, alert_id: str) -> bool:
        """Delete an alert with its queue items and triggers."""

    # ── Queue items ─────────────────────────────────────────────

    @abc.abstractmethod
    def insert_item(self, item: QueueItem) -> None:
        """Insert a new queue item. Raises NotFoundError if its alert is gone."""

    @abc.abstractmethod
    def get_item(self, item_id: str) -> QueueItem | None:
        """Return the queue item or None."""

    @abc.abstractmethod
    def list_items(
        self,
        alert_id: str | None = None,
        status: QueueStatus | None = None,
    ) -> list[QueueItem]:
        """Return queue items, optionally filtered."""

    @abc.abstractmethod
    def claim_items(
        self,
        batch_size: int,
        eligible: ItemPredicate,
        mark: ItemMutation,
    ) -> list[QueueItem]:
        """Atomically select up to *batch_size* pending items and mark them.

        Pending items satisfying *eligible* are taken in ``claim_key`` order
        and replaced by ``mark(item)``.  Returns the marked items in order.
        """

    @abc.abstractmethod
    def update_item(self, item_id: str, mutate: ItemMutation) -> QueueItem:
        """Apply *mutate* to the stored item. Raises NotFoundError."""

    @abc.abstractmethod
    def delete_items(self, predicate: ItemPredicate) -> int:
        """Delete items matching *predicate*. Returns the count deleted."""

    # ── Triggers ────────────────────────────────────────────────

    @abc.abstractmethod
    def put_trigger(self, trigger: Trigger) -> None:
        """Insert a new trigger. Raises NotFoundError if its alert is gone."""

    @abc.abstractmethod
    def get_trigger(self, trigger_id: str) -> Trigger | None:
        """Return the trigger or None."""

    @abc.abstractmethod
    def list_triggers(
        self,
        alert_id: str | None = None,
        unresolved_only: bool = False,
    ) -> list[Trigger]:
        """Return triggers ordered by ``triggered_at``."""

    @abc.abstractmethod
    def update_trigger(self, trigger_id: str, mutate: TriggerMutation) -> Trigger:
        """Apply *mutate* to the stored trigger. Raises NotFoundError."""

    # ── Metrics ─────────────────────────────────────────────────

    @abc.abstractmethod
    def append_metric(self, metric: Metric) -> None:
        """Append one metric."""

    @abc.abstractmethod
    def list_metrics(
        self,
        since: datetime.datetime | None = None,
        name: str | None = None,
    ) -> list[Metric]:
        """Return metrics created after *since*, optionally by name."""

    @abc.abstractmethod
    def delete_metrics(self, before: datetime.datetime) -> int:
        """Delete metrics created before *before*. Returns the count deleted."""

    # ── Activity log ────────────────────────────────────────────

    @abc.abstractmethod
    def append_activity(self, entry: ActivityEntry) -> None:
        """Append one audit entry. Entries are never updated."""

    @abc.abstractmethod
    def list_activity(
        self,
        user_id: str | None = None,
        activity_type: ActivityType | None = None,
        since: datetime.datetime | None = None,
    ) -> list[ActivityEntry]:
        """Return audit entries oldest first, optionally filtered."""

    def close(self) -> None:
        """Release any underlying resources."""
