"""Evaluator contract between the worker and the external evaluation service."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from src.core.types import Alert, QueueItem


class Evaluation(BaseModel):
    """What an evaluator reports for one claimed item."""

    metric_value: float
    is_breach: bool
    result: dict[str, Any] = Field(default_factory=dict)


class PermanentEvaluationError(Exception):
    """Raised by an evaluator when retrying the item cannot help."""


# Any other exception raised by an evaluator is treated as transient.
Evaluator = Callable[[QueueItem, Alert], Awaitable[Evaluation]]

# Fetches the current value of the metric an alert watches.
MetricFetcher = Callable[[Alert], Awaitable[float]]


def threshold_evaluator(fetch: MetricFetcher) -> Evaluator:
    """Build an evaluator that compares a fetched value with the alert's threshold."""

    async def _evaluate(item: QueueItem, alert: Alert) -> Evaluation:
        value = await fetch(alert)
        return Evaluation(
            metric_value=value,
            is_breach=alert.is_breached_by(value),
            result={
                "threshold": alert.threshold_value,
                "comparison": alert.comparison.value,
                "unit": alert.threshold_unit,
            },
        )

    return _evaluate
