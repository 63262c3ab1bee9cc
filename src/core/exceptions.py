"""Exception hierarchy for alert evaluation coordination."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.types import QueueItem


class AlertProcessingError(Exception):
    """Base exception for all alert processing errors."""


class NotFoundError(AlertProcessingError):
    """A referenced alert, queue item or trigger does not exist."""


class InvalidTransitionError(AlertProcessingError):
    """A status or ownership precondition was violated."""


class ExhaustedRetriesError(AlertProcessingError):
    """A transient failure arrived with no attempts left; the item is now failed."""

    def __init__(self, item: QueueItem) -> None:
        super().__init__(
            f"Queue item {item.id} exhausted {item.max_attempts} attempts:"
            f" {item.error_message}"
        )
        self.item = item


class StorageFailureError(AlertProcessingError):
    """The underlying persistence layer is unavailable."""
