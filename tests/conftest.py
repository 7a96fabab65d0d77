"""Shared fixtures for the tasksync test suite."""

from __future__ import annotations

from collections.abc import Generator

import pytest

from tasksync.client.store import TaskStore
from tasksync.client.sync.manager import SyncManager
from tasksync.client.sync.oplog import MemoryOperationLog
from tasksync.client.sync.ratelimit import RateLimiter
from tasksync.client.sync.retry import RetryPolicy
from tasksync.core.config import RateLimitConfig, RetryConfig, SyncConfig
from tests.fakes import FakeRemote


@pytest.fixture
def store() -> TaskStore:
    """Create an empty task store."""
    return TaskStore()


@pytest.fixture
def remote() -> FakeRemote:
    """Create an in-process remote endpoint."""
    return FakeRemote()


@pytest.fixture
def fast_config() -> SyncConfig:
    """Config with tiny retry delays and a generous rate limit."""
    return SyncConfig(
        concurrency_limit=4,
        rate_limit=RateLimitConfig(capacity=100, refill_per_second=1000.0, acquire_timeout=5.0),
        retry=RetryConfig(max_attempts=5, base_delay=0.01, max_delay=0.05, jitter=False),
        call_timeout=5.0,
    )


@pytest.fixture
def oplog() -> MemoryOperationLog:
    """Create an in-memory operation log."""
    return MemoryOperationLog()


@pytest.fixture
def manager(
    store: TaskStore,
    remote: FakeRemote,
    fast_config: SyncConfig,
    oplog: MemoryOperationLog,
) -> Generator[SyncManager, None, None]:
    """Create a SyncManager wired to the fake remote (not started)."""
    sync_manager = SyncManager(
        store,
        remote,
        fast_config,
        oplog=oplog,
        rate_limiter=RateLimiter.from_config(fast_config.rate_limit),
        retry_policy=RetryPolicy.from_config(fast_config.retry),
    )
    yield sync_manager
    sync_manager.close()
