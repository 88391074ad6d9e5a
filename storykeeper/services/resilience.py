"""
Resilience patterns for archive moves.

Provides bounded retry with exponential backoff and a deadline for
long-running bulk operations against the comment stores.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# -----------------------------------------------------------------------------
# Retry
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Wait before attempt n+1 is min(min_wait * 2 ** (n - 1), max_wait).
    """

    max_attempts: int = 3
    min_wait: float = 1.0
    max_wait: float = 30.0

    def wait_for(self, attempt: int) -> float:
        return min(self.min_wait * (2 ** (attempt - 1)), self.max_wait)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.ARCHIVE_RETRY_MAX_ATTEMPTS,
            min_wait=settings.ARCHIVE_RETRY_MIN_WAIT,
            max_wait=settings.ARCHIVE_RETRY_MAX_WAIT,
        )


def retry_call(
    func: Callable[..., T],
    *args: Any,
    policy: RetryPolicy = RetryPolicy(),
    retry_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    deadline: "Deadline | None" = None,
    **kwargs: Any,
) -> T:
    """
    Call func, retrying on retry_exceptions with exponential backoff.

    The last exception is re-raised once attempts are exhausted. When a
    deadline is given it is checked before every attempt, and a backoff that
    would overrun it is cut short by raising DeadlineExceeded.
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, policy.max_attempts + 1):
        if deadline is not None:
            deadline.check(name)
        try:
            return func(*args, **kwargs)
        except retry_exceptions as e:
            if attempt == policy.max_attempts:
                logger.error(f"{name} failed after {policy.max_attempts} attempts: {e}")
                raise

            wait_time = policy.wait_for(attempt)
            if deadline is not None and wait_time >= deadline.remaining():
                raise DeadlineExceeded(f"{name}: no time left to retry after: {e}") from e

            logger.warning(f"{name} attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s...")
            sleep(wait_time)

    raise RuntimeError(f"{name} failed without exception")


# -----------------------------------------------------------------------------
# Deadline
# -----------------------------------------------------------------------------


class DeadlineExceeded(Exception):
    """Raised when a bounded operation runs past its deadline."""

    pass


class Deadline:
    """
    Wall-clock budget for a multi-step operation.

    Synchronous store calls cannot be interrupted safely mid-write, so the
    budget is checked between steps instead.
    """

    def __init__(self, timeout_seconds: float, monotonic: Callable[[], float] = time.monotonic):
        self._monotonic = monotonic
        self.timeout_seconds = timeout_seconds
        self._expires_at = monotonic() + timeout_seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._monotonic())

    @property
    def expired(self) -> bool:
        return self._monotonic() >= self._expires_at

    def check(self, operation: str = "operation") -> None:
        if self.expired:
            raise DeadlineExceeded(f"{operation} exceeded {self.timeout_seconds}s deadline")
