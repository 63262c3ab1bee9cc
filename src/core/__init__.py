"""Core module — config, types, exceptions, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.exceptions import (
    AlertProcessingError,
    ExhaustedRetriesError,
    InvalidTransitionError,
    NotFoundError,
    StorageFailureError,
)
from src.core.logging import setup_logging
from src.core.types import (
    Alert,
    EvaluationKind,
    HealthSnapshot,
    Metric,
    Outcome,
    PermanentFailure,
    QueueItem,
    QueueStatus,
    Success,
    TransientFailure,
    Trigger,
    utc_now,
)

__all__ = [
    "Alert",
    "AlertProcessingError",
    "EvaluationKind",
    "ExhaustedRetriesError",
    "HealthSnapshot",
    "InvalidTransitionError",
    "Metric",
    "NotFoundError",
    "Outcome",
    "PermanentFailure",
    "QueueItem",
    "QueueStatus",
    "Settings",
    "StorageFailureError",
    "Success",
    "TransientFailure",
    "Trigger",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
    "utc_now",
]
