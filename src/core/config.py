"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class QueueConfig(BaseModel):
    """Evaluation queue and claim configuration."""

    default_priority: int = 5
    max_attempts: int = Field(default=3, ge=1)
    batch_size: int = Field(default=50, ge=1)
    lease_ttl_secs: float = 300.0


class WorkerConfig(BaseModel):
    """Evaluation worker poll loop configuration."""

    worker_id: str = ""
    poll_interval_ms: int = 1000


class SchedulerConfig(BaseModel):
    """Periodic enqueueing of scheduled evaluations."""

    enabled: bool = True
    tick_interval_secs: float = 30.0
    priority: int = 5


class TriggerConfig(BaseModel):
    """Trigger ledger configuration."""

    stale_after_secs: float = 86400.0


class HealthConfig(BaseModel):
    """Health snapshot windows."""

    window_hours: float = 24.0
    rate_window_secs: float = 3600.0


class RetentionConfig(BaseModel):
    """Retention horizons for terminal queue items and metrics."""

    enabled: bool = True
    queue_days: float = 30.0
    metrics_days: float = 90.0
    interval_secs: float = 3600.0


class StorageConfig(BaseModel):
    """Store configuration — an empty journal path keeps state in memory only."""

    journal_path: str = ""
    fsync: bool = False


class HttpConfig(BaseModel):
    """Ops HTTP API configuration."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    username: str = ""
    password: SecretStr = SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    # Value of the "service" field on every line.
    service: str = "alert-eval"
    # Third-party loggers capped at WARNING.
    quiet_loggers: list[str] = ["aiohttp.access", "asyncio"]


class Settings(BaseModel):
    """Root settings container."""

    queue: QueueConfig = QueueConfig()
    worker: WorkerConfig = WorkerConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    triggers: TriggerConfig = TriggerConfig()
    health: HealthConfig = HealthConfig()
    retention: RetentionConfig = RetentionConfig()
    storage: StorageConfig = StorageConfig()
    http: HttpConfig = HttpConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
