"""ActivityLog — per-user audit trail of alert lifecycle and trigger changes."""

from __future__ import annotations

import datetime
from typing import Any

import structlog

from src.core.types import (
    ActivityEntry,
    ActivitySeverity,
    ActivityType,
    Alert,
    Clock,
    TriggerEvent,
    TriggerEventType,
    utc_now,
)
from src.storage.base import Store

logger = structlog.stdlib.get_logger()

_TRIGGER_ACTIVITY: dict[TriggerEventType, tuple[ActivityType, ActivitySeverity]] = {
    TriggerEventType.OPENED: (ActivityType.ALERT_TRIGGERED, ActivitySeverity.WARNING),
    TriggerEventType.RESOLVED: (ActivityType.ALERT_RESOLVED, ActivitySeverity.SUCCESS),
}


class ActivityLog:
    """Append-only audit entries, each owned by one user.

    The registry writes ``alert_created`` / ``alert_updated`` /
    ``alert_deleted``; subscribing ``on_trigger_event`` to the trigger
    ledger adds ``alert_triggered`` and ``alert_resolved``.

    Usage::

        activity = ActivityLog(store)
        registry = AlertRegistry(store, activity=activity)
        ledger.on_event(activity.on_trigger_event)
    """

    def __init__(self, store: Store, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def log(
        self,
        user_id: str,
        activity_type: ActivityType,
        description: str,
        metadata: dict[str, Any] | None = None,
        api_id: str | None = None,
        target_id: str | None = None,
        severity: ActivitySeverity = ActivitySeverity.INFO,
    ) -> str:
        """Append one entry. Returns its id."""
        if not user_id:
            raise ValueError("user_id is required")
        if not description:
            raise ValueError("description is required")

        entry = ActivityEntry(
            user_id=user_id,
            activity_type=activity_type,
            description=description,
            metadata=dict(metadata or {}),
            api_id=api_id,
            target_id=target_id,
            severity=severity,
            created_at=self._clock(),
        )
        self._store.append_activity(entry)
        return entry.id

    def log_alert(
        self,
        alert: Alert,
        activity_type: ActivityType,
        user_id: str | None = None,
        **metadata: Any,
    ) -> str:
        """Record an alert lifecycle change on behalf of *user_id* (default: owner)."""
        verb = activity_type.value.removeprefix("alert_")
        return self.log(
            user_id or alert.owner_id,
            activity_type,
            f"Alert '{alert.name}' {verb}",
            metadata=metadata,
            api_id=alert.api_id,
            target_id=alert.id,
        )

    def entries(
        self,
        caller: str | None = None,
        activity_type: ActivityType | None = None,
        since: datetime.datetime | None = None,
    ) -> list[ActivityEntry]:
        """Entries visible to *caller*: their own, or all for the system (None)."""
        return self._store.list_activity(
            user_id=caller, activity_type=activity_type, since=since
        )

    def on_trigger_event(self, event: TriggerEvent) -> None:
        """Trigger ledger callback: audit trigger opening and resolution."""
        mapped = _TRIGGER_ACTIVITY.get(event.event_type)
        if mapped is None:
            return
        alert = self._store.get_alert(event.alert_id)
        if alert is None:
            logger.debug("activity_alert_missing", alert_id=event.alert_id)
            return

        activity_type, severity = mapped
        trigger = event.trigger
        if activity_type == ActivityType.ALERT_TRIGGERED:
            description = (
                f"Alert '{alert.name}' triggered at {trigger.metric_value:g}"
                f" {alert.threshold_unit}"
            )
        else:
            description = (
                f"Alert '{alert.name}' resolved ({trigger.resolution})"
                f" after {trigger.breach_count} breach(es)"
            )
        self.log(
            alert.owner_id,
            activity_type,
            description,
            metadata={
                "trigger_id": trigger.id,
                "breach_count": trigger.breach_count,
                "metric_value": trigger.metric_value,
                "severity": trigger.severity.value,
                "resolution": trigger.resolution.value if trigger.resolution else None,
            },
            api_id=alert.api_id,
            target_id=alert.id,
            severity=severity,
        )
