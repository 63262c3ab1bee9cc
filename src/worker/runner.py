"""EvaluationWorker — claims batches, runs the evaluator, reports outcomes."""

from __future__ import annotations

import asyncio
import os
import socket
import time
from types import TracebackType

import structlog
from pydantic import BaseModel

from src.core.config import QueueConfig, WorkerConfig
from src.core.exceptions import (
    ExhaustedRetriesError,
    InvalidTransitionError,
    NotFoundError,
)
from src.core.logging import bind_worker, item_context
from src.core.types import (
    Outcome,
    PermanentFailure,
    QueueItem,
    QueueStatus,
    Success,
    TransientFailure,
)
from src.evaluation.leases import WorkerLeaseManager
from src.evaluation.queue import EvaluationQueue
from src.monitor.recorder import (
    ALERTS_ERROR,
    ALERTS_PROCESSED,
    ALERTS_TRIGGERED,
    CATEGORY_ERRORS,
    CATEGORY_PROCESSING_TIME,
    CATEGORY_THROUGHPUT,
    PROCESSING_TIME_MS,
    MetricsRecorder,
)
from src.registry.alerts import AlertRegistry
from src.triggers.ledger import TriggerLedger
from src.worker.evaluator import Evaluation, Evaluator, PermanentEvaluationError

logger = structlog.stdlib.get_logger()


class BatchReport(BaseModel):
    """Totals for one ``process_batch`` call."""

    processed_count: int = 0
    triggered_count: int = 0
    error_count: int = 0
    processing_time_ms: int = 0


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class EvaluationWorker:
    """Polls the queue and drives claimed items to an outcome.

    For every claimed item the worker loads the alert, awaits the injected
    evaluator and reports the outcome.  Only once the queue accepts that
    outcome is the observation folded into the trigger ledger, so a lease
    lost mid-evaluation never counts a breach.  Evaluator errors map to
    outcomes:
    ``PermanentEvaluationError`` → permanent failure, anything else →
    transient failure (retried while attempts remain).

    Usage::

        worker = EvaluationWorker(registry, queue, leases, ledger, recorder, evaluate)
        async with worker:
            await asyncio.sleep(60)
    """

    def __init__(
        self,
        registry: AlertRegistry,
        queue: EvaluationQueue,
        leases: WorkerLeaseManager,
        ledger: TriggerLedger,
        recorder: MetricsRecorder,
        evaluator: Evaluator,
        config: WorkerConfig | None = None,
        queue_config: QueueConfig | None = None,
    ) -> None:
        from src.core.config import get_settings

        settings = get_settings()
        self._registry = registry
        self._queue = queue
        self._leases = leases
        self._ledger = ledger
        self._recorder = recorder
        self._evaluator = evaluator
        self._config = config or settings.worker
        self._queue_config = queue_config or settings.queue
        self._worker_id = self._config.worker_id or default_worker_id()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._error_count = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def error_count(self) -> int:
        return self._error_count

    # ── Batch processing ────────────────────────────────────────

    async def process_batch(self, batch_size: int | None = None) -> BatchReport:
        """Claim one batch and process every item in it."""
        started = time.monotonic()
        items = self._leases.claim_batch(
            batch_size or self._queue_config.batch_size, self._worker_id
        )
        report = BatchReport()
        if not items:
            return report

        for item in items:
            with item_context(item):
                await self._process_item(item, report)

        report.processing_time_ms = int((time.monotonic() - started) * 1000)
        tags = {"worker_id": self._worker_id}
        self._recorder.record(
            ALERTS_PROCESSED, report.processed_count, CATEGORY_THROUGHPUT, tags=tags
        )
        self._recorder.record(
            ALERTS_TRIGGERED, report.triggered_count, CATEGORY_THROUGHPUT, tags=tags
        )
        self._recorder.record(
            ALERTS_ERROR, report.error_count, CATEGORY_ERRORS, tags=tags
        )
        logger.info(
            "batch_processed",
            processed=report.processed_count,
            triggered=report.triggered_count,
            errors=report.error_count,
            processing_time_ms=report.processing_time_ms,
        )
        return report

    async def _process_item(self, item: QueueItem, report: BatchReport) -> None:
        started = time.monotonic()
        outcome, evaluation = await self._evaluate(item)
        report.processed_count += 1

        failed = not isinstance(outcome, Success)
        accepted = False
        try:
            updated = self._queue.report_outcome(item.id, self._worker_id, outcome)
        except ExhaustedRetriesError as exc:
            failed = True
            logger.warning("item_failed_permanently", item_id=item.id, error=str(exc))
        except (NotFoundError, InvalidTransitionError) as exc:
            # Alert deleted or lease reclaimed while we were evaluating.
            failed = True
            logger.warning("outcome_rejected", item_id=item.id, error=str(exc))
        else:
            accepted = True
            if updated.status == QueueStatus.PENDING:
                logger.info(
                    "item_requeued",
                    item_id=item.id,
                    attempts=updated.attempts,
                    error=updated.error_message,
                )

        # Only an evaluation whose outcome was accepted counts toward a streak.
        if accepted and evaluation is not None:
            if not await self._observe(item, evaluation):
                failed = True
            elif evaluation.is_breach:
                report.triggered_count += 1

        if failed:
            report.error_count += 1

        elapsed_ms = (time.monotonic() - started) * 1000
        self._recorder.record(
            PROCESSING_TIME_MS,
            elapsed_ms,
            CATEGORY_PROCESSING_TIME,
            unit="ms",
            subcategory=item.evaluation_kind.value,
            tags={"worker_id": self._worker_id, "alert_id": item.alert_id},
        )

    async def _evaluate(self, item: QueueItem) -> tuple[Outcome, Evaluation | None]:
        """Run the evaluator for *item*.

        Returns the outcome to report and, on success, the evaluation whose
        observation should go to the trigger ledger.
        """
        try:
            alert = self._registry.get(item.alert_id)
        except NotFoundError:
            return PermanentFailure(message=f"alert {item.alert_id} not found"), None

        if not alert.is_active:
            return Success(result={"skipped": "alert inactive"}), None

        try:
            evaluation = await self._evaluator(item, alert)
        except PermanentEvaluationError as exc:
            logger.warning("evaluation_rejected", item_id=item.id, error=str(exc))
            return PermanentFailure(message=str(exc) or "permanent evaluation error"), None
        except Exception as exc:
            logger.warning("evaluation_error", item_id=item.id, exc_info=True)
            return TransientFailure(message=str(exc) or type(exc).__name__), None

        result = {
            **evaluation.result,
            "metric_value": evaluation.metric_value,
            "is_breach": evaluation.is_breach,
        }
        return Success(result=result), evaluation

    async def _observe(self, item: QueueItem, evaluation: Evaluation) -> bool:
        """Fold an accepted evaluation into the alert's breach streak."""
        try:
            trigger = await self._ledger.record_observation(
                item.alert_id, evaluation.metric_value, evaluation.is_breach
            )
        except NotFoundError:
            logger.warning("observation_dropped", item_id=item.id, alert_id=item.alert_id)
            return False
        if trigger is not None:
            logger.debug(
                "observation_applied",
                item_id=item.id,
                trigger_id=trigger.id,
                breach_count=trigger.breach_count,
            )
        return True

    # ── Poll loop ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            "worker_started",
            worker_id=self._worker_id,
            poll_interval_ms=self._config.poll_interval_ms,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("worker_stopped", worker_id=self._worker_id)

    async def _poll_loop(self) -> None:
        bind_worker(self._worker_id)
        interval_secs = self._config.poll_interval_ms / 1000.0
        while self._running:
            report = BatchReport()
            try:
                self._leases.reclaim_expired()
                report = await self.process_batch()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception("worker_poll_error", error_count=self._error_count)

            # Drain a backlog without pausing; sleep only when idle.
            if report.processed_count:
                await asyncio.sleep(0)
                continue
            try:
                await asyncio.sleep(interval_secs)
            except asyncio.CancelledError:
                break

    async def __aenter__(self) -> EvaluationWorker:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
