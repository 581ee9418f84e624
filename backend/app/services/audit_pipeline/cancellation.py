"""Cooperative cancellation for batch requests."""

from typing import Optional


class CancellationToken:
    """Flag checked by the scheduler between jobs and between batches.

    Setting it never interrupts work that already started.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._cancelled:
            self.reason = reason
            self._cancelled = True
