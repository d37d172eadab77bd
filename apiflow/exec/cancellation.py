"""Cancellation and deadline handling for workflow runs.

A run observes its token at every suspension point: before and after each
transport call and while waiting out a retry delay.
"""

import threading
import time
from typing import Optional

from ..exceptions import RunCancelledError


class CancellationToken:
    """Cooperative cancellation signal with an optional deadline.

    The token may be cancelled from another thread; waits wake up
    immediately when that happens.
    """

    def __init__(self, timeout_sec: Optional[float] = None):
        """Create a token.

        Args:
            timeout_sec: Run deadline in seconds from now (None for no deadline)
        """
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout_sec if timeout_sec is not None else None

    def cancel(self, reason: str = "Run cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> str:
        if self._reason:
            return self._reason
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return "Run deadline exceeded"
        return ""

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self.reason, {'reason': self.reason})

    def wait(self, seconds: float) -> None:
        """Sleep for up to ``seconds``, raising RunCancelledError if cancelled."""
        self.raise_if_cancelled()
        if seconds > 0:
            remaining = self.remaining()
            timeout = seconds if remaining is None else min(seconds, remaining)
            self._event.wait(timeout)
        self.raise_if_cancelled()

    def cap_timeout(self, timeout_sec: float) -> float:
        """Bound a transport timeout by the time left before the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout_sec
        return min(timeout_sec, remaining)
