"""Outcome of one reconciliation attempt."""

from dataclasses import dataclass
from typing import Optional


class ReconcileError(Exception):
    """A reconciliation attempt failed; the scheduler retries with backoff."""

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        self.message = message
        super().__init__(f"{reason}: {message}" if message else reason)


@dataclass
class ReconcileResult:
    """Requeue directive returned by every successful attempt."""
    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None and self.requeue_after > 0
