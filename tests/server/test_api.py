"""Tests for FastAPI server endpoints."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from tasksync.server.app import create_app
from tasksync.server.repository import TaskRepository


@pytest.fixture
def repository() -> TaskRepository:
    """Create an empty repository."""
    return TaskRepository()


@pytest.fixture
def client(repository: TaskRepository) -> TestClient:
    """Create a test client with the app (no auth)."""
    return TestClient(create_app(repository))


def create(client: TestClient, task_id: str = "t1", **fields: Any) -> dict[str, Any]:
    body = {"id": task_id, "title": "Buy milk", "op_id": "op-create", **fields}
    response = client.post("/tasks", json=body)
    assert response.status_code == 200, response.text
    return response.json()


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client: TestClient) -> None:
        """Health reports the live task count."""
        create(client)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "tasks": 1}


class TestTaskEndpoints:
    """Tests for the task endpoints."""

    def test_create(self, client: TestClient) -> None:
        """POST creates at version 1 and echoes the op id."""
        data = create(client, priority="high", due_date="2025-05-01T00:00:00+00:00")
        assert data["id"] == "t1"
        assert data["version"] == 1
        assert data["priority"] == "high"
        assert data["due_date"] == "2025-05-01T00:00:00+00:00"
        assert data["last_op_id"] == "op-create"
        assert data["deleted"] is False

    def test_create_generates_id(self, client: TestClient) -> None:
        """Without an id the server picks one."""
        response = client.post("/tasks", json={"title": "Anonymous"})
        assert response.status_code == 200
        assert response.json()["id"]

    def test_create_empty_title(self, client: TestClient) -> None:
        """Empty titles are rejected with 422."""
        response = client.post("/tasks", json={"id": "t1", "title": ""})
        assert response.status_code == 422

    def test_create_replay_is_idempotent(self, client: TestClient) -> None:
        """Re-sending the same create returns the existing task."""
        first = create(client)
        response = client.post("/tasks", json={"id": "t1", "title": "Buy milk", "op_id": "op-create"})
        assert response.status_code == 200
        assert response.json() == first

    def test_create_existing_id_conflicts(self, client: TestClient) -> None:
        """Another create with a taken id answers 409."""
        create(client)
        response = client.post("/tasks", json={"id": "t1", "title": "Other", "op_id": "op-other"})
        assert response.status_code == 409
        assert response.json()["current"]["title"] == "Buy milk"

    def test_get_and_list(self, client: TestClient) -> None:
        """Tasks can be fetched and listed."""
        create(client, "a")
        create(client, "b")
        assert client.get("/tasks/a").json()["id"] == "a"
        assert [t["id"] for t in client.get("/tasks").json()] == ["a", "b"]
        assert client.get("/tasks/missing").status_code == 404

    def test_update(self, client: TestClient) -> None:
        """PUT with the current version bumps it."""
        create(client)
        response = client.put(
            "/tasks/t1",
            json={"title": "Buy oat milk", "status": "completed", "expected_version": 1, "op_id": "op-2"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["version"] == 2
        assert data["title"] == "Buy oat milk"
        assert data["status"] == "completed"
        assert data["last_op_id"] == "op-2"

    def test_update_requires_expected_version(self, client: TestClient) -> None:
        """PUT without expected_version is a 422."""
        create(client)
        response = client.put("/tasks/t1", json={"title": "x"})
        assert response.status_code == 422

    def test_stale_update_returns_current(self, client: TestClient) -> None:
        """A stale PUT answers 409 with the current resource."""
        create(client)
        client.put("/tasks/t1", json={"title": "Buy almond milk", "expected_version": 1, "op_id": "op-a"})

        response = client.put("/tasks/t1", json={"title": "Buy oat milk", "expected_version": 1, "op_id": "op-b"})

        assert response.status_code == 409
        body = response.json()
        assert "expected version 1" in body["detail"]
        assert body["current"]["version"] == 2
        assert body["current"]["title"] == "Buy almond milk"
        assert body["current"]["last_op_id"] == "op-a"

    def test_update_missing(self, client: TestClient) -> None:
        """PUT on an unknown task is a 404."""
        response = client.put("/tasks/nope", json={"title": "x", "expected_version": 1})
        assert response.status_code == 404

    def test_delete(self, client: TestClient) -> None:
        """DELETE tombstones the task."""
        create(client)
        response = client.request("DELETE", "/tasks/t1", json={"expected_version": 1, "op_id": "op-d"})
        assert response.status_code == 200
        assert response.json()["deleted"] is True
        assert response.json()["version"] == 2
        assert client.get("/tasks").json() == []
        assert len(client.get("/tasks", params={"include_deleted": True}).json()) == 1

    def test_update_after_delete_conflicts(self, client: TestClient) -> None:
        """Writing to a tombstone answers 409 with the tombstone."""
        create(client)
        client.request("DELETE", "/tasks/t1", json={"expected_version": 1, "op_id": "op-d"})
        response = client.put("/tasks/t1", json={"title": "x", "expected_version": 2, "op_id": "op-x"})
        assert response.status_code == 409
        assert response.json()["current"]["deleted"] is True

    def test_bad_timestamp(self, client: TestClient) -> None:
        """Garbage timestamps are a 422."""
        response = client.post("/tasks", json={"id": "t1", "title": "x", "updated_at": "yesterday"})
        assert response.status_code == 422


class TestAuth:
    """Tests for bearer token auth."""

    @pytest.fixture
    def secured(self, repository: TaskRepository) -> TestClient:
        return TestClient(create_app(repository, token="s3cret"))

    def test_missing_token(self, secured: TestClient) -> None:
        """Requests without a token are rejected."""
        assert secured.get("/tasks").status_code == 401

    def test_wrong_token(self, secured: TestClient) -> None:
        """Requests with a wrong token are rejected."""
        response = secured.get("/tasks", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_valid_token(self, secured: TestClient) -> None:
        """Requests with the right token pass."""
        response = secured.get("/tasks", headers={"Authorization": "Bearer s3cret"})
        assert response.status_code == 200

    def test_health_is_public(self, secured: TestClient) -> None:
        """Health needs no token."""
        assert secured.get("/health").status_code == 200
