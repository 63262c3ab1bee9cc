"""Operational monitoring — metrics, health snapshots, retention, ops API."""

from src.monitor.health import HealthMonitor
from src.monitor.http_api import create_web_app, start_http_api
from src.monitor.recorder import (
    ALERTS_ERROR,
    ALERTS_PROCESSED,
    ALERTS_TRIGGERED,
    PROCESSING_TIME_MS,
    MetricsRecorder,
)
from src.monitor.retention import RetentionSweeper

__all__ = [
    "ALERTS_ERROR",
    "ALERTS_PROCESSED",
    "ALERTS_TRIGGERED",
    "PROCESSING_TIME_MS",
    "HealthMonitor",
    "MetricsRecorder",
    "RetentionSweeper",
    "create_web_app",
    "start_http_api",
]
