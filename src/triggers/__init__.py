"""Trigger ledger — consecutive-breach tracking and resolution."""

from src.triggers.ledger import (
    SeverityFn,
    TriggerEventCallback,
    TriggerLedger,
    default_severity,
    is_actionable,
)

__all__ = [
    "SeverityFn",
    "TriggerEventCallback",
    "TriggerLedger",
    "default_severity",
    "is_actionable",
]
