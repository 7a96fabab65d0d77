"""Retry policy with exponential backoff.

This module provides:
- RetryPolicy: Backoff delay computation and give-up decision
- ErrorClass: Transient / permanent / conflict classification of errors
- classify_error: Map an exception onto an ErrorClass

Delays follow min(max_delay, base_delay * backoff_factor ** (attempt - 1)),
optionally multiplied by a jitter factor drawn from [0.5, 1.5] so that many
failing operations do not retry in lockstep.
"""

from __future__ import annotations

import logging
import random
from enum import Enum, auto
from typing import TYPE_CHECKING

import httpx

from tasksync.core.errors import (
    AuthorizationError,
    ConflictDetected,
    NotFoundError,
    RateLimitTimeout,
    RemoteServerError,
    TransientNetworkError,
    UnresolvableConflict,
    ValidationError,
)

if TYPE_CHECKING:
    from tasksync.core.config import RetryConfig

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 60.0  # seconds
DEFAULT_BACKOFF_FACTOR = 2.0

JITTER_MIN = 0.5
JITTER_MAX = 1.5

# Network-related exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    httpx.TransportError,
)

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    TransientNetworkError,
    RemoteServerError,
    RateLimitTimeout,
    *NETWORK_EXCEPTIONS,
)

PERMANENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    ValidationError,
    AuthorizationError,
    NotFoundError,
    UnresolvableConflict,
)


class ErrorClass(Enum):
    """How the sync pipeline treats an error."""

    TRANSIENT = auto()  # Retry with backoff
    PERMANENT = auto()  # Abandon immediately
    CONFLICT = auto()  # Hand to the ConflictResolver


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an exception raised by a remote call.

    Unknown exception types are treated as permanent so that a programming
    error never turns into an endless retry loop.
    """
    if isinstance(error, ConflictDetected):
        return ErrorClass.CONFLICT
    if isinstance(error, PERMANENT_EXCEPTIONS):
        return ErrorClass.PERMANENT
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


class RetryPolicy:
    """Backoff delays and give-up decisions for failed sync operations.

    Usage:
        policy = RetryPolicy(max_attempts=5, base_delay=1.0)
        if policy.should_retry(error, op.attempts):
            delay = policy.next_delay(op.attempts)
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        jitter: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            max_attempts: Total attempts allowed (first try included).
            base_delay: Delay after the first failed attempt, in seconds.
            max_delay: Upper bound for any delay, in seconds.
            backoff_factor: Multiplier applied per attempt.
            jitter: Multiply delays by a random factor in [0.5, 1.5].
            rng: Random source for jitter (for reproducible tests).
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        """Create a policy from configuration."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            backoff_factor=config.backoff_factor,
            jitter=config.jitter,
        )

    def next_delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number `attempt`.

        Args:
            attempt: 1-based number of the attempt that just failed.

        Returns:
            Delay in seconds, never above max_delay.
        """
        attempt = max(attempt, 1)
        try:
            delay = self.base_delay * self.backoff_factor ** (attempt - 1)
        except OverflowError:
            delay = self.max_delay
        delay = min(self.max_delay, delay)

        if self.jitter:
            delay = min(self.max_delay, delay * self._rng.uniform(JITTER_MIN, JITTER_MAX))
        return delay

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Decide whether a failed attempt should be retried.

        Args:
            error: The exception raised by the attempt.
            attempt: 1-based number of the attempt that just failed.

        Returns:
            True only for transient errors while attempts remain.
        """
        if attempt >= self.max_attempts:
            return False
        return classify_error(error) is ErrorClass.TRANSIENT
