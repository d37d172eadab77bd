"""
Transport-level retry policy.

Operation-level retries happen inside a single step invocation and are
independent of the workflow-level retry action.
"""

import time
from dataclasses import dataclass
from typing import Optional, Set

from .cancellation import CancellationToken


# Statuses treated as transient, plus network failures (status None)
RETRYABLE_STATUSES = {408, 409, 425, 429, 500, 502, 503, 504}


@dataclass
class RetryPolicy:
    """
    Configuration for transport retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries)
        delay_ms: Delay between retries in milliseconds
        retryable_statuses: HTTP statuses that trigger retries
    """
    max_retries: int = 0
    delay_ms: int = 1000
    retryable_statuses: Optional[Set[int]] = None

    def __post_init__(self):
        if self.retryable_statuses is None:
            self.retryable_statuses = set(RETRYABLE_STATUSES)

    @classmethod
    def for_operation(cls, retry_count: int = 1, delay_ms: int = 1000) -> 'RetryPolicy':
        """Retry policy for an operation call with the given budget."""
        return cls(max_retries=max(0, retry_count), delay_ms=max(0, delay_ms))

    def should_retry(self, status_code: Optional[int], attempt: int) -> bool:
        """
        Determine if a retry should be attempted.

        Args:
            status_code: Status of the failed attempt, None for network failures
            attempt: Current attempt number (0-based)

        Returns:
            True if should retry, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        if status_code is None:
            return True

        return status_code in (self.retryable_statuses or set())

    def wait(self, cancel_token: Optional[CancellationToken] = None):
        """Wait for the configured delay between retries."""
        if cancel_token is not None:
            cancel_token.wait(self.delay_ms / 1000.0)
        elif self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)
