"""Token bucket rate limiter for outbound remote calls.

The bucket holds up to `capacity` tokens and refills continuously at
`refill_per_second` (fractional accumulation on a monotonic clock). There is
no background refill thread: every call refills the bucket from the time
elapsed since the previous call, under a single condition variable.

Over any window of length W, at most capacity + ceil(refill_per_second * W)
acquisitions are granted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from tasksync.core.errors import RateLimitTimeout

if TYPE_CHECKING:
    from tasksync.core.config import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """Thread-safe token bucket.

    Usage:
        limiter = RateLimiter(capacity=10, refill_per_second=5.0)
        limiter.acquire(timeout=30.0)  # blocks, raises RateLimitTimeout
        client.update_task(...)
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize a full bucket.

        Args:
            capacity: Maximum number of tokens (burst size).
            refill_per_second: Tokens added per second.
            clock: Monotonic time source in seconds.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be > 0")

        self._capacity = float(capacity)
        self._rate = float(refill_per_second)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._cond = threading.Condition()
        self._granted = 0

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> RateLimiter:
        """Create a limiter from configuration."""
        return cls(capacity=config.capacity, refill_per_second=config.refill_per_second)

    @property
    def capacity(self) -> int:
        """Bucket capacity."""
        return int(self._capacity)

    @property
    def refill_per_second(self) -> float:
        """Refill rate in tokens per second."""
        return self._rate

    @property
    def available(self) -> float:
        """Tokens currently in the bucket (fractional)."""
        with self._cond:
            self._refill()
            return self._tokens

    @property
    def granted(self) -> int:
        """Total number of tokens handed out."""
        return self._granted

    def _refill(self) -> None:
        """Add tokens for the time elapsed since the last refill (lock held)."""
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token without waiting.

        Returns:
            True if a token was taken.
        """
        with self._cond:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                self._granted += 1
                return True
            return False

    def acquire(self, timeout: float | None = None) -> None:
        """Take a token, waiting for the bucket to refill if needed.

        Args:
            timeout: Maximum seconds to wait (None = wait forever).

        Raises:
            RateLimitTimeout: If no token became available in time.
        """
        deadline = None if timeout is None else self._clock() + timeout

        with self._cond:
            while True:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self._granted += 1
                    return

                wait_time = (1.0 - self._tokens) / self._rate
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        logger.debug("Rate limit token not available within %.2fs", timeout)
                        raise RateLimitTimeout(
                            f"No rate limit token available within {timeout:.2f}s"
                        )
                    wait_time = min(wait_time, remaining)

                self._cond.wait(timeout=wait_time)
