"""Pytest fixtures for integration tests.

This module provides fixtures for end-to-end testing: SyncManagers talking
HTTP to the reference server through FastAPI's TestClient.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from tasksync.client.api import RemoteClient
from tasksync.client.store import TaskStore
from tasksync.client.sync.manager import SyncManager
from tasksync.client.sync.oplog import MemoryOperationLog
from tasksync.core.config import RateLimitConfig, RemoteConfig, RetryConfig, SyncConfig
from tasksync.server.app import create_app
from tasksync.server.repository import TaskRepository

SERVER_TOKEN = "integration-token"


@dataclass
class SyncTestClient:
    """Container for one client's resources."""

    store: TaskStore
    manager: SyncManager
    api_client: RemoteClient

    def sync(self, timeout: float = 10.0) -> None:
        """Deliver everything pending."""
        assert self.manager.drain(timeout=timeout), "sync did not finish"

    def pull(self, task_id: str) -> None:
        """Install the server copy of a task into the local store."""
        self.store.apply_remote(self.api_client.get_task(task_id).task)


@pytest.fixture
def repository() -> TaskRepository:
    """Server-side storage shared by every client."""
    return TaskRepository()


@pytest.fixture
def make_client(repository: TaskRepository) -> Generator[Callable[..., SyncTestClient], None, None]:
    """Factory for clients connected to one in-process server."""
    app = create_app(repository, token=SERVER_TOKEN)
    created: list[SyncTestClient] = []

    def factory(token: str = SERVER_TOKEN, concurrency_limit: int = 2) -> SyncTestClient:
        config = SyncConfig(
            concurrency_limit=concurrency_limit,
            rate_limit=RateLimitConfig(capacity=50, refill_per_second=500.0),
            retry=RetryConfig(max_attempts=3, base_delay=0.01, max_delay=0.05, jitter=False),
        )
        remote_config = RemoteConfig(server_url="http://testserver", token=token)
        api_client = RemoteClient(remote_config, client=TestClient(app))
        store = TaskStore()
        manager = SyncManager(store, api_client, config, oplog=MemoryOperationLog())
        manager.start()
        client = SyncTestClient(store, manager, api_client)
        created.append(client)
        return client

    yield factory

    for client in created:
        client.manager.close()
        client.api_client.close()


@pytest.fixture
def client_a(make_client: Callable[..., SyncTestClient]) -> SyncTestClient:
    """First client."""
    return make_client()


@pytest.fixture
def client_b(make_client: Callable[..., SyncTestClient]) -> SyncTestClient:
    """Second client."""
    return make_client()
