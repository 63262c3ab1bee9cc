"""AlertRegistry — alert definitions and owner-scoped access."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from src.core.exceptions import NotFoundError
from src.core.types import (
    ActivityType,
    Alert,
    Clock,
    ComparisonOperator,
    MetricKind,
    utc_now,
)
from src.registry.activity import ActivityLog
from src.storage.base import Store

logger = structlog.stdlib.get_logger()

# (caller, alert) -> may the caller see/modify this alert?  caller None = system.
AccessPolicy = Callable[[str | None, Alert], bool]

_IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at"})


def owner_policy(caller: str | None, alert: Alert) -> bool:
    """Internal callers see everything; users see only alerts they own."""
    return caller is None or caller == alert.owner_id


class AlertRegistry:
    """Durable store of alert definitions.

    The evaluation core only reads from it (``exists`` / ``get``); the
    create/update/delete methods serve the configuration surface.  Hidden
    alerts are reported as missing, never as forbidden.
    """

    def __init__(
        self,
        store: Store,
        access_policy: AccessPolicy = owner_policy,
        clock: Clock = utc_now,
        activity: ActivityLog | None = None,
    ) -> None:
        self._store = store
        self._allowed = access_policy
        self._clock = clock
        self._activity = activity

    def create(
        self,
        owner_id: str,
        name: str,
        metric_kind: MetricKind,
        comparison: ComparisonOperator,
        threshold_value: float,
        threshold_unit: str,
        **options: Any,
    ) -> Alert:
        """Create and persist a new alert.

        ``options`` accepts any other ``Alert`` field (``is_active``,
        ``consecutive_breaches_required``, ``notification`` ...).
        """
        now = self._clock()
        alert = Alert(
            owner_id=owner_id,
            name=name,
            metric_kind=metric_kind,
            comparison=comparison,
            threshold_value=threshold_value,
            threshold_unit=threshold_unit,
            created_at=now,
            updated_at=now,
            **options,
        )
        self._store.put_alert(alert)
        logger.info("alert_created", alert_id=alert.id, owner_id=owner_id, name=name)
        if self._activity is not None:
            self._activity.log_alert(alert, ActivityType.ALERT_CREATED)
        return alert

    def exists(self, alert_id: str) -> bool:
        return self._store.get_alert(alert_id) is not None

    def get(self, alert_id: str, caller: str | None = None) -> Alert:
        alert = self._store.get_alert(alert_id)
        if alert is None or not self._allowed(caller, alert):
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    def list_alerts(
        self, caller: str | None = None, active_only: bool = False
    ) -> list[Alert]:
        return [
            a
            for a in self._store.list_alerts()
            if self._allowed(caller, a) and (a.is_active or not active_only)
        ]

    def update(self, alert_id: str, caller: str | None, **changes: Any) -> Alert:
        """Apply field changes on behalf of *caller* (the owner or the system)."""
        bad = _IMMUTABLE_FIELDS.intersection(changes)
        if bad:
            raise ValueError(f"Cannot modify alert fields: {sorted(bad)}")

        def _apply(current: Alert) -> Alert:
            if not self._allowed(caller, current):
                raise NotFoundError(f"Alert {alert_id} not found")
            merged = {**current.model_dump(), **changes, "updated_at": self._clock()}
            return Alert.model_validate(merged)

        updated = self._store.update_alert(alert_id, _apply)
        logger.info("alert_updated", alert_id=alert_id, fields=sorted(changes))
        if self._activity is not None:
            self._activity.log_alert(
                updated, ActivityType.ALERT_UPDATED, caller, fields=sorted(changes)
            )
        return updated

    def deactivate(self, alert_id: str, caller: str | None = None) -> Alert:
        return self.update(alert_id, caller, is_active=False)

    def delete(self, alert_id: str, caller: str | None = None) -> None:
        """Delete an alert together with its queue items and triggers."""
        alert = self.get(alert_id, caller)
        if not self._store.delete_alert(alert_id):
            raise NotFoundError(f"Alert {alert_id} not found")
        logger.info("alert_deleted", alert_id=alert_id)
        if self._activity is not None:
            self._activity.log_alert(alert, ActivityType.ALERT_DELETED, caller)
