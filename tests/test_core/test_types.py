"""Tests for domain types — comparison operators, statuses, validation."""

from __future__ import annotations

import datetime

import pytest
from pydantic import ValidationError

from src.core.exceptions import ExhaustedRetriesError
from src.core.types import (
    Alert,
    ComparisonOperator,
    MetricKind,
    QueueItem,
    QueueStatus,
    Trigger,
    utc_now,
)


def _alert(**kw: object) -> Alert:
    defaults: dict[str, object] = {
        "owner_id": "u1",
        "name": "a",
        "metric_kind": MetricKind.ERROR_RATE,
        "comparison": ComparisonOperator.GTE,
        "threshold_value": 5.0,
        "threshold_unit": "%",
    }
    defaults.update(kw)
    return Alert(**defaults)  # type: ignore[arg-type]


class TestComparisonOperator:
    @pytest.mark.parametrize(
        ("op", "value", "expected"),
        [
            (ComparisonOperator.GT, 6.0, True),
            (ComparisonOperator.GT, 5.0, False),
            (ComparisonOperator.LT, 4.0, True),
            (ComparisonOperator.LT, 5.0, False),
            (ComparisonOperator.GTE, 5.0, True),
            (ComparisonOperator.LTE, 5.0, True),
            (ComparisonOperator.LTE, 5.1, False),
            (ComparisonOperator.EQ, 5.0, True),
            (ComparisonOperator.EQ, 4.9, False),
        ],
    )
    def test_compare(self, op: ComparisonOperator, value: float, expected: bool) -> None:
        assert op.compare(value, 5.0) is expected

    def test_parses_symbol(self) -> None:
        assert ComparisonOperator(">=") is ComparisonOperator.GTE


class TestAlert:
    def test_is_breached_by(self) -> None:
        alert = _alert()
        assert alert.is_breached_by(5.0)
        assert not alert.is_breached_by(4.99)

    def test_defaults(self) -> None:
        alert = _alert()
        assert alert.is_active is True
        assert alert.consecutive_breaches_required == 1
        assert alert.evaluation_window == datetime.timedelta(minutes=5)
        assert alert.notification.enabled is False
        assert alert.notification.quiet_hours.start == datetime.time(22, 0)

    def test_consecutive_breaches_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _alert(consecutive_breaches_required=0)

    def test_rejects_unknown_metric_kind(self) -> None:
        with pytest.raises(ValidationError):
            _alert(metric_kind="cpu")

    def test_ids_are_unique(self) -> None:
        assert _alert().id != _alert().id


class TestQueueItem:
    def test_defaults(self) -> None:
        item = QueueItem(alert_id="a1")
        assert item.status == QueueStatus.PENDING
        assert item.priority == 5
        assert item.attempts == 0
        assert item.max_attempts == 3
        assert item.worker_id is None

    def test_claim_key_orders_priority_then_due_time(self) -> None:
        now = utc_now()
        urgent_late = QueueItem(alert_id="a", priority=1, scheduled_at=now)
        normal_early = QueueItem(
            alert_id="a", priority=5, scheduled_at=now - datetime.timedelta(hours=1)
        )
        normal_late = QueueItem(alert_id="a", priority=5, scheduled_at=now)
        ordered = sorted([normal_late, normal_early, urgent_late], key=lambda i: i.claim_key)
        assert ordered == [urgent_late, normal_early, normal_late]

    def test_terminal_statuses(self) -> None:
        assert QueueStatus.COMPLETED.is_terminal
        assert QueueStatus.FAILED.is_terminal
        assert not QueueStatus.PENDING.is_terminal
        assert not QueueStatus.PROCESSING.is_terminal


class TestTrigger:
    def test_resolved_flag(self) -> None:
        trigger = Trigger(alert_id="a", metric_value=1.0)
        assert trigger.resolved is False
        assert trigger.model_copy(update={"resolved_at": utc_now()}).resolved is True


class TestExhaustedRetriesError:
    def test_carries_item(self) -> None:
        item = QueueItem(alert_id="a", attempts=3, error_message="timeout")
        exc = ExhaustedRetriesError(item)
        assert exc.item is item
        assert "timeout" in str(exc)
