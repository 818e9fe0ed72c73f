"""
Retry policy for transient storage failures.

Backends raise `TransientError` for timeouts and connection failures; the
components wrap idempotent storage calls in `RetryPolicy.call`, which retries
with exponential backoff using tenacity and re-raises the last error once the
attempts are exhausted.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from casebook.config import Settings, get_settings
from casebook.domain.errors import TransientError
from casebook.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Exponential-backoff retry of `TransientError`.

    Parameters
    ----------
    attempts : int
        Total number of attempts, including the first one.
    min_wait : float
        Lower bound of the backoff between attempts, in seconds.
    max_wait : float
        Upper bound of the backoff between attempts, in seconds.
    """

    def __init__(self, attempts: int = 3, min_wait: float = 0.1, max_wait: float = 2.0) -> None:
        self.attempts = max(1, attempts)
        self.min_wait = min_wait
        self.max_wait = max_wait

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            attempts=settings.retry_attempts,
            min_wait=settings.retry_min_wait_seconds,
            max_wait=settings.retry_max_wait_seconds,
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(attempts=1, min_wait=0.0, max_wait=0.0)

    def _retrying(self) -> Retrying:
        # A fresh controller per call keeps statistics thread-local.
        return Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke `fn(*args, **kwargs)`, retrying on TransientError."""
        return self._retrying()(fn, *args, **kwargs)


__all__ = ["RetryPolicy"]
