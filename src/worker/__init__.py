"""Evaluation worker — poll loop and evaluator contract."""

from src.worker.evaluator import (
    Evaluation,
    Evaluator,
    MetricFetcher,
    PermanentEvaluationError,
    threshold_evaluator,
)
from src.worker.runner import BatchReport, EvaluationWorker, default_worker_id

__all__ = [
    "BatchReport",
    "Evaluation",
    "EvaluationWorker",
    "Evaluator",
    "MetricFetcher",
    "PermanentEvaluationError",
    "default_worker_id",
    "threshold_evaluator",
]
