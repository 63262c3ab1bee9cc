#!/usr/bin/env python3
"""Main entrypoint — wires the store, queue, workers and maintenance loops.

Usage::

    # Run with default config and an evaluator from your own package
    python scripts/run.py --evaluator mypkg.evaluators:check_alert

    # Custom config file, four concurrent workers
    python scripts/run.py --config config/settings.yaml --workers 4 \\
        --evaluator mypkg.evaluators:check_alert

    # Override log level
    python scripts/run.py --log-level DEBUG --evaluator mypkg.evaluators:check_alert
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import signal
import sys

import structlog

from src.core.config import Settings, WorkerConfig, load_settings
from src.core.exceptions import StorageFailureError
from src.core.logging import setup_logging
from src.evaluation.leases import WorkerLeaseManager
from src.evaluation.queue import EvaluationQueue
from src.evaluation.scheduler import EvaluationScheduler
from src.monitor.health import HealthMonitor
from src.monitor.http_api import start_http_api
from src.monitor.recorder import MetricsRecorder
from src.monitor.retention import RetentionSweeper
from src.registry.activity import ActivityLog
from src.registry.alerts import AlertRegistry
from src.storage.base import Store
from src.storage.memory import MemoryStore
from src.triggers.ledger import TriggerLedger
from src.worker.evaluator import Evaluator
from src.worker.runner import EvaluationWorker, default_worker_id

logger = structlog.get_logger(__name__)


def load_evaluator(target: str) -> Evaluator:
    """Import ``module:attribute`` and return it as the evaluator."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Evaluator must look like 'module:callable', got {target!r}")
    module = importlib.import_module(module_name)
    evaluator = getattr(module, attr)
    if not callable(evaluator):
        raise TypeError(f"{target} is not callable")
    return evaluator


def open_store(settings: Settings) -> Store:
    if settings.storage.journal_path:
        return MemoryStore.open(settings.storage.journal_path, fsync=settings.storage.fsync)
    logger.warning("store_volatile", reason="storage.journal_path is empty")
    return MemoryStore()


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(settings.logging, level=args.log_level)

    try:
        evaluator = load_evaluator(args.evaluator)
    except (ImportError, AttributeError, TypeError, ValueError) as exc:
        print(f"Cannot load evaluator: {exc}", file=sys.stderr)
        return 1

    try:
        store = open_store(settings)
    except StorageFailureError as exc:
        print(f"Cannot open store: {exc}", file=sys.stderr)
        return 1

    # ── Domain components ────────────────────────────────────────
    activity = ActivityLog(store)
    registry = AlertRegistry(store, activity=activity)
    queue = EvaluationQueue(store, registry, config=settings.queue)
    leases = WorkerLeaseManager(store, config=settings.queue)
    ledger = TriggerLedger(store, registry, config=settings.triggers)
    ledger.on_event(activity.on_trigger_event)
    recorder = MetricsRecorder(store)
    health = HealthMonitor(store, config=settings.health)
    sweeper = RetentionSweeper(store, config=settings.retention)

    # ── Workers ──────────────────────────────────────────────────
    base_id = settings.worker.worker_id or default_worker_id()
    workers = [
        EvaluationWorker(
            registry,
            queue,
            leases,
            ledger,
            recorder,
            evaluator,
            config=WorkerConfig(
                worker_id=base_id if args.workers == 1 else f"{base_id}-{n}",
                poll_interval_ms=settings.worker.poll_interval_ms,
            ),
            queue_config=settings.queue,
        )
        for n in range(args.workers)
    ]

    scheduler: EvaluationScheduler | None = None
    if settings.scheduler.enabled:
        scheduler = EvaluationScheduler(registry, queue, config=settings.scheduler)

    # ── Start everything ─────────────────────────────────────────
    for worker in workers:
        await worker.start()
    if scheduler is not None:
        await scheduler.start()
    if settings.retention.enabled:
        await sweeper.start()

    runner = None
    if settings.http.enabled:
        runner = await start_http_api(
            health,
            sweeper,
            host=settings.http.host,
            port=settings.http.port,
            username=settings.http.username or None,
            password=settings.http.password.get_secret_value() or None,
        )
        logger.info("http_api_listening", host=settings.http.host, port=settings.http.port)

    logger.info(
        "coordinator_running",
        workers=len(workers),
        scheduler="active" if scheduler else "disabled",
        retention="active" if settings.retention.enabled else "disabled",
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("coordinator_shutting_down")

    if runner is not None:
        await runner.cleanup()
    if scheduler is not None:
        await scheduler.stop()
    await sweeper.stop()
    for worker in workers:
        try:
            await worker.stop()
        except Exception:
            logger.exception("worker_stop_error", worker_id=worker.worker_id)

    snap = health.snapshot()
    logger.info(
        "coordinator_stopped",
        queue_size=snap.queue_size,
        processing=snap.processing_count,
        queue_lag_seconds=snap.queue_lag_seconds,
    )
    store.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the alert evaluation coordinator.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--evaluator",
        required=True,
        help="Evaluator to call for each claimed item, as module:callable",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of concurrent workers in this process (default: 1)",
    )
    args = parser.parse_args()
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
