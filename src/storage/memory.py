"""In-memory store with row holds and an optional write-ahead journal."""

from __future__ import annotations

import datetime
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from src.core.exceptions import NotFoundError
from src.core.types import (
    ActivityEntry,
    ActivityType,
    Alert,
    Metric,
    QueueItem,
    QueueStatus,
    Trigger,
)
from src.storage.base import (
    AlertMutation,
    ItemMutation,
    ItemPredicate,
    Store,
    TriggerMutation,
)
from src.storage.journal import Journal

logger = structlog.stdlib.get_logger()

RecordT = TypeVar("RecordT", bound=BaseModel)

_KIND_ALERT = "alert"
_KIND_ITEM = "queue_item"
_KIND_TRIGGER = "trigger"
_KIND_METRIC = "metric"
_KIND_ACTIVITY = "activity"


class MemoryStore(Store):
    """Thread-safe dictionary-backed store.

    ``_lock`` guards the dictionaries and is only held for in-memory work.
    A record being mutated is "held" (its id sits in ``_held``) while its
    mutation runs and its journal entry is written.  Claimers skip held
    rows; single-record writers wait for them on ``_released``.

    Usage::

        store = MemoryStore.open("var/alerts.journal")   # replays, then appends
        store = MemoryStore()                              # volatile
    """

    def __init__(self, journal: Journal | None = None) -> None:
        self._lock = threading.Lock()
        self._released = threading.Condition(self._lock)
        self._held: set[str] = set()
        self._alerts: dict[str, Alert] = {}
        self._items: dict[str, QueueItem] = {}
        self._pending: set[str] = set()
        self._triggers: dict[str, Trigger] = {}
        self._metrics: dict[str, Metric] = {}
        self._activity: list[ActivityEntry] = []
        self._journal = journal

    @classmethod
    def open(cls, path: str | Path, fsync: bool = False) -> MemoryStore:
        """Rebuild state from the journal at *path* and keep appending to it.

        Raises StorageFailureError when another store already owns the journal.
        """
        journal = Journal(path, fsync=fsync)
        # Lock first so nobody appends between replay and our first write.
        journal.open()
        store = cls()
        entries = 0
        try:
            for entry in journal.replay():
                store._apply_entry(entry)
                entries += 1
        except Exception:
            journal.close()
            raise
        store._journal = journal
        logger.info(
            "store_recovered",
            path=str(path),
            entries=entries,
            alerts=len(store._alerts),
            queue_items=len(store._items),
            triggers=len(store._triggers),
            metrics=len(store._metrics),
            activity=len(store._activity),
        )
        return store

    def close(self) -> None:
        if self._journal is not None:
            self._journal.close()

    # ── Alerts ──────────────────────────────────────────────────

    def put_alert(self, alert: Alert) -> None:
        self._log_put(_KIND_ALERT, [alert])
        with self._lock:
            self._alerts[alert.id] = alert

    def get_alert(self, alert_id: str) -> Alert | None:
        with self._lock:
            return self._alerts.get(alert_id)

    def list_alerts(self) -> list[Alert]:
        with self._lock:
            return sorted(self._alerts.values(), key=lambda a: a.created_at)

    def update_alert(self, alert_id: str, mutate: AlertMutation) -> Alert:
        with self._hold(self._alerts, alert_id, "Alert") as current:
            updated = mutate(current)
            self._log_put(_KIND_ALERT, [updated])
            with self._lock:
                self._alerts[alert_id] = updated
        return updated

    def delete_alert(self, alert_id: str) -> bool:
        with self._lock:
            if alert_id not in self._alerts:
                return False
            # Wait until no dependent row is mid-update before cascading.
            while True:
                item_ids = [i.id for i in self._items.values() if i.alert_id == alert_id]
                trigger_ids = [
                    t.id for t in self._triggers.values() if t.alert_id == alert_id
                ]
                dependents = {alert_id, *item_ids, *trigger_ids}
                if not dependents & self._held:
                    break
                self._released.wait()
            self._append({"op": "delete", "kind": _KIND_ALERT, "ids": [alert_id]})
            self._remove_alert(alert_id)
        logger.debug(
            "alert_cascade_deleted",
            alert_id=alert_id,
            queue_items=len(item_ids),
            triggers=len(trigger_ids),
        )
        return True

    # ── Queue items ─────────────────────────────────────────────

    def insert_item(self, item: QueueItem) -> None:
        # The parent alert stays held so a cascade delete cannot interleave.
        with self._hold(self._alerts, item.alert_id, "Alert"):
            self._log_put(_KIND_ITEM, [item])
            with self._lock:
                self._index_item(item)

    def get_item(self, item_id: str) -> QueueItem | None:
        with self._lock:
            return self._items.get(item_id)

    def list_items(
        self,
        alert_id: str | None = None,
        status: QueueStatus | None = None,
    ) -> list[QueueItem]:
        with self._lock:
            items = [
                i
                for i in self._items.values()
                if (alert_id is None or i.alert_id == alert_id)
                and (status is None or i.status == status)
            ]
        return sorted(items, key=lambda i: i.created_at)

    def claim_items(
        self,
        batch_size: int,
        eligible: ItemPredicate,
        mark: ItemMutation,
    ) -> list[QueueItem]:
        if batch_size <= 0:
            return []

        with self._lock:
            candidates = [
                self._items[item_id]
                for item_id in self._pending
                if item_id not in self._held and eligible(self._items[item_id])
            ]
            candidates.sort(key=lambda i: i.claim_key)
            selected = candidates[:batch_size]
            self._held.update(i.id for i in selected)

        if not selected:
            return []

        try:
            claimed = [mark(item) for item in selected]
            # Write-ahead: the whole assignment is one journal line.
            self._log_put(_KIND_ITEM, claimed)
            with self._lock:
                for item in claimed:
                    self._index_item(item)
        finally:
            with self._lock:
                self._held.difference_update(i.id for i in selected)
                self._released.notify_all()
        return claimed

    def update_item(self, item_id: str, mutate: ItemMutation) -> QueueItem:
        with self._hold(self._items, item_id, "Queue item") as current:
            updated = mutate(current)
            self._log_put(_KIND_ITEM, [updated])
            with self._lock:
                self._index_item(updated)
        return updated

    def delete_items(self, predicate: ItemPredicate) -> int:
        with self._lock:
            doomed = [
                i.id
                for i in self._items.values()
                if i.id not in self._held and predicate(i)
            ]
            if not doomed:
                return 0
            self._append({"op": "delete", "kind": _KIND_ITEM, "ids": doomed})
            for item_id in doomed:
                self._items.pop(item_id, None)
                self._pending.discard(item_id)
        return len(doomed)

    # ── Triggers ────────────────────────────────────────────────

    def put_trigger(self, trigger: Trigger) -> None:
        with self._hold(self._alerts, trigger.alert_id, "Alert"):
            self._log_put(_KIND_TRIGGER, [trigger])
            with self._lock:
                self._triggers[trigger.id] = trigger

    def get_trigger(self, trigger_id: str) -> Trigger | None:
        with self._lock:
            return self._triggers.get(trigger_id)

    def list_triggers(
        self,
        alert_id: str | None = None,
        unresolved_only: bool = False,
    ) -> list[Trigger]:
        with self._lock:
            triggers = [
                t
                for t in self._triggers.values()
                if (alert_id is None or t.alert_id == alert_id)
                and not (unresolved_only and t.resolved)
            ]
        return sorted(triggers, key=lambda t: t.triggered_at)

    def update_trigger(self, trigger_id: str, mutate: TriggerMutation) -> Trigger:
        with self._hold(self._triggers, trigger_id, "Trigger") as current:
            updated = mutate(current)
            self._log_put(_KIND_TRIGGER, [updated])
            with self._lock:
                self._triggers[trigger_id] = updated
        return updated

    # ── Metrics ─────────────────────────────────────────────────

    def append_metric(self, metric: Metric) -> None:
        self._log_put(_KIND_METRIC, [metric])
        with self._lock:
            self._metrics[metric.id] = metric

    def list_metrics(
        self,
        since: datetime.datetime | None = None,
        name: str | None = None,
    ) -> list[Metric]:
        with self._lock:
            return [
                m
                for m in self._metrics.values()
                if (since is None or m.created_at > since)
                and (name is None or m.name == name)
            ]

    def delete_metrics(self, before: datetime.datetime) -> int:
        with self._lock:
            doomed = [m.id for m in self._metrics.values() if m.created_at < before]
            if not doomed:
                return 0
            self._append({"op": "delete", "kind": _KIND_METRIC, "ids": doomed})
            for metric_id in doomed:
                del self._metrics[metric_id]
        return len(doomed)

    # ── Activity log ────────────────────────────────────────────

    def append_activity(self, entry: ActivityEntry) -> None:
        self._log_put(_KIND_ACTIVITY, [entry])
        with self._lock:
            self._activity.append(entry)

    def list_activity(
        self,
        user_id: str | None = None,
        activity_type: ActivityType | None = None,
        since: datetime.datetime | None = None,
    ) -> list[ActivityEntry]:
        with self._lock:
            entries = [
                e
                for e in self._activity
                if (user_id is None or e.user_id == user_id)
                and (activity_type is None or e.activity_type == activity_type)
                and (since is None or e.created_at > since)
            ]
        return sorted(entries, key=lambda e: e.created_at)

    # ── Internal ────────────────────────────────────────────────

    @contextmanager
    def _hold(
        self, table: dict[str, RecordT], key: str, label: str
    ) -> Iterator[RecordT]:
        """Wait for *key* to be free, hold it, and yield the current record."""
        with self._lock:
            while key in self._held:
                self._released.wait()
            record = table.get(key)
            if record is None:
                raise NotFoundError(f"{label} {key} not found")
            self._held.add(key)
        try:
            yield record
        finally:
            with self._lock:
                self._held.discard(key)
                self._released.notify_all()

    def _index_item(self, item: QueueItem) -> None:
        """Store *item* and keep the pending index in sync. Caller holds _lock."""
        self._items[item.id] = item
        if item.status == QueueStatus.PENDING:
            self._pending.add(item.id)
        else:
            self._pending.discard(item.id)

    def _remove_alert(self, alert_id: str) -> None:
        """Drop an alert and everything that references it. Caller holds _lock."""
        self._alerts.pop(alert_id, None)
        for item_id in [i.id for i in self._items.values() if i.alert_id == alert_id]:
            del self._items[item_id]
            self._pending.discard(item_id)
        for trigger_id in [
            t.id for t in self._triggers.values() if t.alert_id == alert_id
        ]:
            del self._triggers[trigger_id]

    def _log_put(self, kind: str, records: list[Any]) -> None:
        self._append({
            "op": "put",
            "kind": kind,
            "records": [r.model_dump(mode="json") for r in records],
        })

    def _append(self, entry: dict[str, Any]) -> None:
        if self._journal is not None:
            self._journal.append(entry)

    def _apply_entry(self, entry: dict[str, Any]) -> None:
        """Replay one journal entry into the dictionaries."""
        op = entry.get("op")
        kind = entry.get("kind")
        if op == "put":
            for raw in entry.get("records", []):
                if kind == _KIND_ALERT:
                    alert = Alert.model_validate(raw)
                    self._alerts[alert.id] = alert
                elif kind == _KIND_ITEM:
                    self._index_item(QueueItem.model_validate(raw))
                elif kind == _KIND_TRIGGER:
                    trigger = Trigger.model_validate(raw)
                    self._triggers[trigger.id] = trigger
                elif kind == _KIND_METRIC:
                    metric = Metric.model_validate(raw)
                    self._metrics[metric.id] = metric
                elif kind == _KIND_ACTIVITY:
                    self._activity.append(ActivityEntry.model_validate(raw))
        elif op == "delete":
            for record_id in entry.get("ids", []):
                if kind == _KIND_ALERT:
                    self._remove_alert(record_id)
                elif kind == _KIND_ITEM:
                    self._items.pop(record_id, None)
                    self._pending.discard(record_id)
                elif kind == _KIND_METRIC:
                    self._metrics.pop(record_id, None)
        else:
            logger.warning("journal_unknown_entry", op=op, kind=kind)
