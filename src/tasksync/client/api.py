"""HTTP client for the remote task endpoint.

This module provides:
- RemoteTask: Task resource as returned by the server
- RemoteClient: HTTP client for the task endpoint contract
- RemoteAPI: Protocol the SyncManager depends on (RemoteClient or a fake)

HTTP outcomes are mapped onto the tasksync error taxonomy:
    401/403 -> AuthorizationError       404 -> NotFoundError
    409     -> ConflictDetected         400/422 -> ValidationError
    5xx     -> RemoteServerError        timeout/connection -> TransientNetworkError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from tasksync.core.config import RemoteConfig
from tasksync.core.errors import (
    AuthorizationError,
    ConflictDetected,
    NotFoundError,
    RemoteServerError,
    TaskSyncError,
    TransientNetworkError,
    ValidationError,
)
from tasksync.core.models import Task

logger = logging.getLogger(__name__)

# Task fields sent on create/update
WRITE_FIELDS = ("title", "description", "priority", "status", "due_date", "created_at", "updated_at")


@dataclass(frozen=True)
class RemoteTask:
    """Task resource from server.

    Attributes:
        task: The task as the server stores it.
        last_op_id: Id of the operation that produced this version, if known.
    """

    task: Task
    last_op_id: str | None = None

    @property
    def version(self) -> int:
        """Server version."""
        return self.task.version

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteTask:
        """Create from API response dictionary."""
        return cls(task=Task.from_dict(data), last_op_id=data.get("last_op_id"))

    def to_dict(self) -> dict[str, Any]:
        """Serialize the way the server does."""
        return {**self.task.to_dict(), "last_op_id": self.last_op_id}


class RemoteAPI(Protocol):
    """Remote operations used by the SyncManager."""

    def create_task(self, payload: dict[str, Any], op_id: str) -> RemoteTask: ...

    def update_task(
        self, task_id: str, payload: dict[str, Any], expected_version: int, op_id: str
    ) -> RemoteTask: ...

    def delete_task(
        self, task_id: str, expected_version: int, op_id: str, updated_at: str | None = None
    ) -> RemoteTask: ...


def _detail(response: httpx.Response, default: str) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or default
    if isinstance(body, dict):
        return body.get("detail", default)
    return default


class RemoteClient:
    """HTTP client for the remote task endpoint."""

    def __init__(self, config: RemoteConfig, client: httpx.Client | None = None) -> None:
        """Initialize the client.

        Args:
            config: Remote endpoint configuration.
            client: Pre-built httpx client (e.g. a FastAPI TestClient); by
                default one is created from the configuration.
        """
        self._config = config
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        if client is None:
            client = httpx.Client(
                base_url=config.server_url,
                timeout=config.timeout,
                headers=headers,
                verify=config.verify_ssl,
            )
        else:
            client.headers.update(headers)
        self._client = client

    @property
    def server_url(self) -> str:
        """Base URL of the server."""
        return self._config.server_url

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> RemoteClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, translating transport failures."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status in (401, 403):
            raise AuthorizationError(_detail(response, "Invalid or expired token"), status)
        if status == 404:
            raise NotFoundError(_detail(response, "Resource not found"))
        if status == 409:
            body = response.json()
            current = body.get("current")
            raise ConflictDetected(
                body.get("detail", "Version conflict"),
                RemoteTask.from_dict(current) if current else None,
            )
        if status in (400, 422):
            raise ValidationError(str(_detail(response, "Invalid request")))
        if status >= 500:
            raise RemoteServerError(_detail(response, "Server error"), status)
        if status >= 400:
            raise TaskSyncError(f"Unexpected status {status}: {_detail(response, '')}")
        return response

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Task operations ===

    def get_task(self, task_id: str) -> RemoteTask:
        """Get a task by id (tombstones included).

        Raises:
            NotFoundError: If the server never saw the task.
        """
        response = self._request("GET", f"/tasks/{task_id}")
        return RemoteTask.from_dict(response.json())

    def create_task(self, payload: dict[str, Any], op_id: str) -> RemoteTask:
        """Create a task on the server.

        Args:
            payload: Task snapshot (Task.to_dict()); its id is kept.
            op_id: Operation id, echoed back as last_op_id.

        Returns:
            The created resource.

        Raises:
            ConflictDetected: If a task with this id already exists.
        """
        body = {field: payload.get(field) for field in WRITE_FIELDS}
        body.update(id=payload["id"], expected_version=None, op_id=op_id)
        response = self._request("POST", "/tasks", json=body)
        return RemoteTask.from_dict(response.json())

    def update_task(
        self,
        task_id: str,
        payload: dict[str, Any],
        expected_version: int,
        op_id: str,
    ) -> RemoteTask:
        """Replace a task's fields on the server.

        Args:
            task_id: Task id.
            payload: Task snapshot to write.
            expected_version: Server version this write is based on.
            op_id: Operation id.

        Returns:
            The updated resource.

        Raises:
            ConflictDetected: If the server version moved on.
            NotFoundError: If the task does not exist remotely.
        """
        body = {field: payload.get(field) for field in WRITE_FIELDS}
        body.update(expected_version=expected_version, op_id=op_id)
        response = self._request("PUT", f"/tasks/{task_id}", json=body)
        return RemoteTask.from_dict(response.json())

    def delete_task(
        self,
        task_id: str,
        expected_version: int,
        op_id: str,
        updated_at: str | None = None,
    ) -> RemoteTask:
        """Delete a task on the server.

        Returns:
            The tombstone.

        Raises:
            ConflictDetected: If the server version moved on.
            NotFoundError: If the task does not exist remotely.
        """
        body = {"expected_version": expected_version, "op_id": op_id, "updated_at": updated_at}
        response = self._request("DELETE", f"/tasks/{task_id}", json=body)
        return RemoteTask.from_dict(response.json())
