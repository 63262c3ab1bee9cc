"""MetricsRecorder — append-only operational measurements."""

from __future__ import annotations

import structlog

from src.core.types import Clock, Metric, utc_now
from src.storage.base import Store

logger = structlog.stdlib.get_logger()

# Metric names the health snapshot aggregates.
ALERTS_PROCESSED = "alerts_processed"
ALERTS_ERROR = "alerts_error"
ALERTS_TRIGGERED = "alerts_triggered"
PROCESSING_TIME_MS = "processing_time_ms"

# Categories used by the evaluation worker.
CATEGORY_THROUGHPUT = "throughput"
CATEGORY_ERRORS = "errors"
CATEGORY_PROCESSING_TIME = "processing_time"


class MetricsRecorder:
    """Appends tagged measurements to the store.

    Usage::

        recorder = MetricsRecorder(store)
        recorder.record("processing_time_ms", 42.0, "processing_time", unit="ms")
    """

    def __init__(self, store: Store, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        name: str,
        value: float,
        category: str,
        unit: str = "count",
        subcategory: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        """Append one metric. Returns its id."""
        if not name:
            raise ValueError("metric name is required")
        if not category:
            raise ValueError("metric category is required")

        metric = Metric(
            name=name,
            value=float(value),
            unit=unit,
            category=category,
            subcategory=subcategory,
            tags=dict(tags or {}),
            created_at=self._clock(),
        )
        self._store.append_metric(metric)
        return metric.id
