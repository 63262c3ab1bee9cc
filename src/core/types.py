"""Domain types for alert evaluation — alerts, queue items, triggers, metrics."""

from __future__ import annotations

import datetime
import uuid
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# Injectable time source; every component reads "now" through one of these.
Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    """Timezone-aware current UTC time."""
    return datetime.datetime.now(datetime.UTC)


def new_id() -> str:
    return str(uuid.uuid4())


# ── Alert definitions ────────────────────────────────────────────


class MetricKind(StrEnum):
    """What an alert watches."""

    RESPONSE_TIME = "response_time"
    ERROR_RATE = "error_rate"
    UPTIME = "uptime"


class ComparisonOperator(StrEnum):
    """Comparison applied between an observed value and the threshold."""

    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "="

    def compare(self, value: float, threshold: float) -> bool:
        if self is ComparisonOperator.GT:
            return value > threshold
        if self is ComparisonOperator.LT:
            return value < threshold
        if self is ComparisonOperator.GTE:
            return value >= threshold
        if self is ComparisonOperator.LTE:
            return value <= threshold
        return value == threshold


class NotificationFrequency(StrEnum):
    IMMEDIATE = "immediate"
    FIVE_MINUTES = "5min"
    FIFTEEN_MINUTES = "15min"
    HOURLY = "hourly"


class EmailFormat(StrEnum):
    HTML = "html"
    PLAIN = "plain"
    MOBILE = "mobile"


class SeverityFilter(StrEnum):
    CRITICAL = "critical"
    HIGH_CRITICAL = "high-critical"
    ALL = "all"


class QuietHours(BaseModel):
    """Daily window during which notifications are held back."""

    enabled: bool = False
    start: datetime.time = datetime.time(22, 0)
    end: datetime.time = datetime.time(8, 0)


class NotificationPolicy(BaseModel):
    """How downstream delivery should treat an alert's triggers."""

    enabled: bool = False
    frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE
    email_format: EmailFormat = EmailFormat.HTML
    severity_filter: SeverityFilter = SeverityFilter.HIGH_CRITICAL
    quiet_hours: QuietHours = Field(default_factory=QuietHours)


class Alert(BaseModel):
    """A monitored-metric alert definition."""

    id: str = Field(default_factory=new_id)
    owner_id: str
    name: str
    description: str = ""
    metric_kind: MetricKind
    comparison: ComparisonOperator
    threshold_value: float
    threshold_unit: str
    # Monitored API endpoint this alert belongs to, when it belongs to one.
    api_id: str | None = None
    is_active: bool = True
    consecutive_breaches_required: int = Field(default=1, ge=1)
    evaluation_window_minutes: int = Field(default=5, ge=1)
    notification: NotificationPolicy = Field(default_factory=NotificationPolicy)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @property
    def evaluation_window(self) -> datetime.timedelta:
        return datetime.timedelta(minutes=self.evaluation_window_minutes)

    def is_breached_by(self, value: float) -> bool:
        """Whether *value* satisfies the alert's operator/threshold condition."""
        return self.comparison.compare(value, self.threshold_value)


# ── Evaluation queue ─────────────────────────────────────────────


class EvaluationKind(StrEnum):
    """Why an evaluation was scheduled."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    THRESHOLD_BREACH = "threshold_breach"


class QueueStatus(StrEnum):
    """Lifecycle of a queue item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class QueueItem(BaseModel):
    """One scheduled evaluation of one alert."""

    id: str = Field(default_factory=new_id)
    alert_id: str
    evaluation_kind: EvaluationKind = EvaluationKind.SCHEDULED
    status: QueueStatus = QueueStatus.PENDING
    priority: int = 5
    scheduled_at: datetime.datetime = Field(default_factory=utc_now)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    claimed_at: datetime.datetime | None = None
    processed_at: datetime.datetime | None = None
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    worker_id: str | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None

    @property
    def claim_key(self) -> tuple[int, datetime.datetime, datetime.datetime]:
        """Sort key for claiming: priority, then due time, then age."""
        return (self.priority, self.scheduled_at, self.created_at)

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempts


class Success(BaseModel):
    """Evaluation finished; *result* is stored on the item."""

    result: dict[str, Any] = Field(default_factory=dict)


class TransientFailure(BaseModel):
    """Evaluation failed but may succeed on a later attempt."""

    message: str


class PermanentFailure(BaseModel):
    """Evaluation failed and must not be retried."""

    message: str


Outcome = Success | TransientFailure | PermanentFailure


# ── Triggers ─────────────────────────────────────────────────────


class TriggerSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolutionKind(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    TIMEOUT = "timeout"


class Trigger(BaseModel):
    """A streak of consecutive breaches for one alert."""

    id: str = Field(default_factory=new_id)
    alert_id: str
    triggered_at: datetime.datetime = Field(default_factory=utc_now)
    metric_value: float
    breach_count: int = Field(default=1, ge=1)
    severity: TriggerSeverity = TriggerSeverity.MEDIUM
    resolved_at: datetime.datetime | None = None
    resolution: ResolutionKind | None = None
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @property
    def resolved(self) -> bool:
        return self.resolved_at is not None


class TriggerEventType(StrEnum):
    OPENED = "opened"
    ESCALATED = "escalated"
    ACTIONABLE = "actionable"
    RESOLVED = "resolved"


class TriggerEvent(BaseModel):
    """Emitted by the trigger ledger whenever a streak changes."""

    event_type: TriggerEventType
    trigger: Trigger
    alert_id: str
    timestamp: datetime.datetime = Field(default_factory=utc_now)


# ── Operational metrics, audit & health ──────────────────────────


class Metric(BaseModel):
    """A single append-only operational measurement."""

    id: str = Field(default_factory=new_id)
    name: str
    value: float
    unit: str = "count"
    category: str
    subcategory: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=utc_now)


class ActivityType(StrEnum):
    """Audit entry kinds written to the activity log."""

    ALERT_CREATED = "alert_created"
    ALERT_UPDATED = "alert_updated"
    ALERT_DELETED = "alert_deleted"
    ALERT_TRIGGERED = "alert_triggered"
    ALERT_RESOLVED = "alert_resolved"
    ERROR_DETECTED = "error_detected"


class ActivitySeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class ActivityEntry(BaseModel):
    """One append-only audit record, visible to the user it belongs to."""

    id: str = Field(default_factory=new_id)
    user_id: str
    activity_type: ActivityType
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    api_id: str | None = None
    target_id: str | None = None
    severity: ActivitySeverity = ActivitySeverity.INFO
    created_at: datetime.datetime = Field(default_factory=utc_now)


class HealthSnapshot(BaseModel):
    """Point-in-time view of queue backlog and processing health."""

    queue_size: int = 0
    processing_rate: float = 0.0
    error_rate: float = 0.0
    avg_processing_time_ms: float = 0.0
    queue_lag_seconds: int = 0
    processing_count: int = 0
    failed_count: int = 0
    completed_count: int = 0
    generated_at: datetime.datetime = Field(default_factory=utc_now)
