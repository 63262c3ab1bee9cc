"""Evaluation queue — enqueue, claim, outcome reporting, scheduling."""

from src.evaluation.leases import LEASE_EXPIRED_MESSAGE, WorkerLeaseManager
from src.evaluation.queue import EvaluationQueue
from src.evaluation.scheduler import EvaluationScheduler

__all__ = [
    "LEASE_EXPIRED_MESSAGE",
    "EvaluationQueue",
    "EvaluationScheduler",
    "WorkerLeaseManager",
]
