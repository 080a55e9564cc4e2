"""Cooperative cancellation for long-running downloads and mutations.

A CancellationToken is shared by every task of one run. Work checks it at
each suspension point (before a page request, before a backoff sleep and
before a label mutation), so an overall timeout or a user abort stops new
work without interrupting a request that is already in flight.
"""

import asyncio
from typing import Optional


class OperationCancelledError(Exception):
    """Raised when work is abandoned because its token was cancelled.

    Attributes:
        reason: Why the token was cancelled.
    """

    def __init__(self, reason: str = "Operation cancelled"):
        self.reason = reason
        super().__init__(reason)


class CancellationToken:
    """Signals cancellation to cooperating tasks."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Operation cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if the token has been cancelled."""
        if self._event.is_set():
            raise OperationCancelledError(self._reason)

    def cancel_after(self, seconds: float) -> asyncio.TimerHandle:
        """Cancel the token once the given number of seconds has elapsed.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        return loop.call_later(seconds, self.cancel, f"Timed out after {seconds} seconds")
