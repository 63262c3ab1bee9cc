"""structlog wiring for the evaluation service.

Every line carries ``service`` and, where bound, the worker and queue
item being processed, so one item's journey through claim, evaluation
and outcome can be followed by filtering on ``item_id``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from src.core.config import LoggingConfig

if TYPE_CHECKING:
    from src.core.types import QueueItem

RENDERERS = ("json", "console")


class _ServiceStamp:
    """Processor adding a fixed ``service`` field unless the event set one."""

    def __init__(self, service: str) -> None:
        self._service = service

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", self._service)
        return event_dict


def _renderer(fmt: str) -> Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    raise ValueError(f"Unknown log format {fmt!r}; expected one of {RENDERERS}")


def setup_logging(
    config: LoggingConfig | None = None,
    level: str | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging through one handler.

    *level* and *fmt* override the matching fields of *config* (which
    defaults to the loaded settings); *stream* defaults to stderr.
    """
    if config is None:
        from src.core.config import get_settings

        config = get_settings().logging
    log_level = getattr(logging, (level or config.level).upper(), logging.INFO)
    renderer = _renderer(fmt or config.format)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        _ServiceStamp(config.service),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Foreign (plain stdlib) records get the same fields as structlog ones.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_worker(worker_id: str) -> None:
    """Attach *worker_id* to every log line emitted from the current context."""
    structlog.contextvars.bind_contextvars(worker_id=worker_id)


@contextmanager
def item_context(item: QueueItem) -> Iterator[None]:
    """Bind the queue item's identity for the duration of its processing."""
    with structlog.contextvars.bound_contextvars(
        item_id=item.id,
        alert_id=item.alert_id,
        attempt=item.attempts,
    ):
        yield
