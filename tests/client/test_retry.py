"""Tests for retry policy and error classification."""

from __future__ import annotations

import random

import httpx
import pytest

from tasksync.client.api import RemoteTask
from tasksync.client.sync.retry import ErrorClass, RetryPolicy, classify_error
from tasksync.core.config import RetryConfig
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
from tasksync.core.models import Task


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize(
        "error",
        [
            TransientNetworkError("down"),
            RemoteServerError("boom", 503),
            RateLimitTimeout("slow"),
            httpx.ConnectError("refused"),
            TimeoutError(),
        ],
    )
    def test_transient(self, error: Exception) -> None:
        """Network and server errors are transient."""
        assert classify_error(error) is ErrorClass.TRANSIENT

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("bad"),
            AuthorizationError("no", 401),
            NotFoundError("gone"),
            UnresolvableConflict("deleted"),
            KeyError("programming error"),
        ],
    )
    def test_permanent(self, error: Exception) -> None:
        """Client errors and unknown exceptions are permanent."""
        assert classify_error(error) is ErrorClass.PERMANENT

    def test_conflict(self) -> None:
        """ConflictDetected goes to the resolver."""
        current = RemoteTask(Task(id="t1", title="a", version=2))
        assert classify_error(ConflictDetected("stale", current)) is ErrorClass.CONFLICT


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delays(self) -> None:
        """Delays double per attempt until max_delay."""
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=5.0, backoff_factor=2.0)
        assert [policy.next_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_huge_attempt_does_not_overflow(self) -> None:
        """Very large attempt numbers clamp to max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=60.0, backoff_factor=10.0)
        assert policy.next_delay(10_000) == 60.0

    def test_jitter_range(self) -> None:
        """Jittered delays stay within [0.5, 1.5] times the base and under max_delay."""
        policy = RetryPolicy(base_delay=2.0, max_delay=100.0, jitter=True, rng=random.Random(7))
        for _ in range(200):
            assert 1.0 <= policy.next_delay(1) <= 3.0
        capped = RetryPolicy(base_delay=2.0, max_delay=2.5, jitter=True, rng=random.Random(7))
        assert all(capped.next_delay(1) <= 2.5 for _ in range(200))

    def test_should_retry_transient_until_budget(self) -> None:
        """Transient errors are retried while attempts remain."""
        policy = RetryPolicy(max_attempts=3)
        error = TransientNetworkError("down")
        assert policy.should_retry(error, 1)
        assert policy.should_retry(error, 2)
        assert not policy.should_retry(error, 3)

    def test_should_not_retry_permanent(self) -> None:
        """Permanent errors are never retried."""
        assert not RetryPolicy().should_retry(ValidationError("bad"), 1)

    def test_from_config(self) -> None:
        """Parameters come from RetryConfig."""
        policy = RetryPolicy.from_config(RetryConfig(max_attempts=2, base_delay=0.5, jitter=False))
        assert policy.max_attempts == 2
        assert policy.next_delay(1) == 0.5
