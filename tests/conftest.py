"""Shared fixtures — a controllable clock and a wired in-memory store."""

from __future__ import annotations

import datetime

import pytest

from src.core.config import reset_settings
from src.core.types import Alert, ComparisonOperator, MetricKind
from src.registry.alerts import AlertRegistry
from src.storage.memory import MemoryStore

START = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime.datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta: float) -> datetime.datetime:
        self.now += datetime.timedelta(**delta)
        return self.now


@pytest.fixture(autouse=True)
def _clean_settings() -> None:
    reset_settings()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def registry(store: MemoryStore, clock: FakeClock) -> AlertRegistry:
    return AlertRegistry(store, clock=clock)


def make_alert(registry: AlertRegistry, **overrides: object) -> Alert:
    """Create a response-time alert (> 500 ms) with optional field overrides."""
    fields: dict[str, object] = {
        "owner_id": "user-1",
        "name": "api latency",
        "metric_kind": MetricKind.RESPONSE_TIME,
        "comparison": ComparisonOperator.GT,
        "threshold_value": 500.0,
        "threshold_unit": "ms",
    }
    fields.update(overrides)
    return registry.create(**fields)  # type: ignore[arg-type]


def seed_alert(store: MemoryStore, alert_id: str = "a", **overrides: object) -> Alert:
    """Put an alert with a fixed id straight into *store*."""
    fields: dict[str, object] = {
        "id": alert_id,
        "owner_id": "user-1",
        "name": f"alert {alert_id}",
        "metric_kind": MetricKind.RESPONSE_TIME,
        "comparison": ComparisonOperator.GT,
        "threshold_value": 500.0,
        "threshold_unit": "ms",
    }
    fields.update(overrides)
    alert = Alert(**fields)  # type: ignore[arg-type]
    store.put_alert(alert)
    return alert
