"""TriggerLedger — consecutive-breach streaks per alert and their resolution."""

from __future__ import annotations

import asyncio
import datetime
import threading
from collections.abc import Awaitable, Callable

import structlog

from src.core.config import TriggerConfig
from src.core.exceptions import NotFoundError
from src.core.types import (
    Alert,
    Clock,
    ResolutionKind,
    Trigger,
    TriggerEvent,
    TriggerEventType,
    TriggerSeverity,
    utc_now,
)
from src.registry.alerts import AlertRegistry
from src.storage.base import Store

logger = structlog.stdlib.get_logger()

TriggerEventCallback = Callable[[TriggerEvent], Awaitable[None] | None]

# Maps a first breach to a severity; the policy itself lives outside the ledger.
SeverityFn = Callable[[Alert, float], TriggerSeverity]


def default_severity(alert: Alert, value: float) -> TriggerSeverity:
    return TriggerSeverity.MEDIUM


def is_actionable(trigger: Trigger, alert: Alert) -> bool:
    """Whether the streak is long enough to notify on."""
    return (
        not trigger.resolved
        and trigger.breach_count >= alert.consecutive_breaches_required
    )


class TriggerLedger:
    """Records breach observations and keeps at most one open trigger per alert.

    - breach, open trigger    → breach_count += 1
    - breach, no open trigger → new trigger (breach_count = 1)
    - clear, open trigger     → resolved automatically
    - clear, no open trigger  → nothing

    Observations for one alert are serialized; different alerts proceed
    independently.  Events are emitted after the state change is stored.

    Usage::

        ledger = TriggerLedger(store, registry)
        ledger.on_event(notifier.on_trigger_event)
        await ledger.record_observation(alert_id, 812.0, is_breach=True)
    """

    def __init__(
        self,
        store: Store,
        registry: AlertRegistry,
        severity_fn: SeverityFn = default_severity,
        config: TriggerConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        from src.core.config import get_settings

        self._store = store
        self._registry = registry
        self._severity_fn = severity_fn
        self._config = config or get_settings().triggers
        self._clock = clock
        self._callbacks: list[TriggerEventCallback] = []
        self._locks_guard = threading.Lock()
        self._alert_locks: dict[str, threading.Lock] = {}

    def on_event(self, callback: TriggerEventCallback) -> None:
        """Register a callback for trigger events."""
        self._callbacks.append(callback)

    async def _emit(self, event: TriggerEvent) -> None:
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "trigger_event_callback_error",
                    event_type=event.event_type,
                    trigger_id=event.trigger.id,
                )

    # ── Queries ─────────────────────────────────────────────────

    def get(self, trigger_id: str) -> Trigger:
        trigger = self._store.get_trigger(trigger_id)
        if trigger is None:
            raise NotFoundError(f"Trigger {trigger_id} not found")
        return trigger

    def open_trigger(self, alert_id: str) -> Trigger | None:
        open_ = self._store.list_triggers(alert_id=alert_id, unresolved_only=True)
        return open_[-1] if open_ else None

    def history(self, alert_id: str, caller: str | None = None) -> list[Trigger]:
        """All triggers for an alert visible to *caller*, oldest first."""
        self._registry.get(alert_id, caller)
        return self._store.list_triggers(alert_id=alert_id)

    def is_actionable(self, trigger: Trigger) -> bool:
        return is_actionable(trigger, self._registry.get(trigger.alert_id))

    # ── Observations ────────────────────────────────────────────

    async def record_observation(
        self, alert_id: str, metric_value: float, is_breach: bool
    ) -> Trigger | None:
        """Fold one observation into the alert's breach streak.

        Returns the affected trigger, or None when a clear observation found
        no open streak.
        """
        alert = self._registry.get(alert_id)
        events: list[TriggerEvent] = []

        with self._lock_for(alert_id):
            now = self._clock()
            current = self.open_trigger(alert_id)

            if is_breach and current is not None:
                trigger = self._store.update_trigger(
                    current.id,
                    lambda t: t.model_copy(update={
                        "breach_count": t.breach_count + 1,
                        "metric_value": metric_value,
                        "updated_at": now,
                    }),
                )
                events.append(self._event(TriggerEventType.ESCALATED, trigger, now))
            elif is_breach:
                trigger = Trigger(
                    alert_id=alert_id,
                    triggered_at=now,
                    metric_value=metric_value,
                    breach_count=1,
                    severity=self._severity_fn(alert, metric_value),
                    created_at=now,
                    updated_at=now,
                )
                self._store.put_trigger(trigger)
                events.append(self._event(TriggerEventType.OPENED, trigger, now))
            elif current is not None:
                trigger = self._store.update_trigger(
                    current.id,
                    lambda t: _resolved(t, ResolutionKind.AUTOMATIC, now),
                )
                events.append(self._event(TriggerEventType.RESOLVED, trigger, now))
            else:
                return None

        if is_breach and trigger.breach_count == alert.consecutive_breaches_required:
            events.append(self._event(TriggerEventType.ACTIONABLE, trigger, now))

        logger.debug(
            "observation_recorded",
            alert_id=alert_id,
            trigger_id=trigger.id,
            is_breach=is_breach,
            breach_count=trigger.breach_count,
            resolved=trigger.resolved,
        )
        for event in events:
            await self._emit(event)
        return trigger

    # ── Explicit resolution ─────────────────────────────────────

    async def resolve_manually(self, trigger_id: str) -> Trigger:
        return await self._resolve(trigger_id, ResolutionKind.MANUAL)

    async def resolve_by_timeout(self, trigger_id: str) -> Trigger:
        return await self._resolve(trigger_id, ResolutionKind.TIMEOUT)

    async def resolve_stale(
        self, max_age: datetime.timedelta | None = None
    ) -> list[Trigger]:
        """Timeout-resolve open triggers with no observation for *max_age*."""
        age = max_age or datetime.timedelta(seconds=self._config.stale_after_secs)
        cutoff = self._clock() - age
        resolved: list[Trigger] = []
        for trigger in self._store.list_triggers(unresolved_only=True):
            if trigger.updated_at > cutoff:
                continue
            try:
                resolved.append(await self.resolve_by_timeout(trigger.id))
            except NotFoundError:
                continue
        if resolved:
            logger.info("stale_triggers_resolved", count=len(resolved))
        return resolved

    async def _resolve(self, trigger_id: str, kind: ResolutionKind) -> Trigger:
        existing = self.get(trigger_id)

        def _apply(current: Trigger) -> Trigger:
            if current.resolved:
                raise NotFoundError(f"Trigger {trigger_id} is already resolved")
            return _resolved(current, kind, self._clock())

        with self._lock_for(existing.alert_id):
            trigger = self._store.update_trigger(trigger_id, _apply)

        logger.info(
            "trigger_resolved",
            trigger_id=trigger_id,
            alert_id=trigger.alert_id,
            resolution=kind,
            breach_count=trigger.breach_count,
        )
        await self._emit(self._event(TriggerEventType.RESOLVED, trigger, trigger.updated_at))
        return trigger

    # ── Internal ────────────────────────────────────────────────

    def _lock_for(self, alert_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._alert_locks.get(alert_id)
            if lock is None:
                lock = self._alert_locks[alert_id] = threading.Lock()
            return lock

    @staticmethod
    def _event(
        event_type: TriggerEventType, trigger: Trigger, now: datetime.datetime
    ) -> TriggerEvent:
        return TriggerEvent(
            event_type=event_type,
            trigger=trigger,
            alert_id=trigger.alert_id,
            timestamp=now,
        )


def _resolved(
    trigger: Trigger, kind: ResolutionKind, now: datetime.datetime
) -> Trigger:
    return trigger.model_copy(update={
        "resolved_at": now,
        "resolution": kind,
        "updated_at": now,
    })
