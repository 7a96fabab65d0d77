"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from pydantic import BaseModel

from tasksync.server.repository import StoredTask

# === Task schemas ===


class TaskWriteRequest(BaseModel):
    """Request body for task creation and update."""

    id: str | None = None
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None
    due_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    expected_version: int | None = None
    op_id: str | None = None

    def fields(self) -> dict[str, object]:
        """Editable task fields present in the request."""
        data = self.model_dump(
            include={"title", "description", "priority", "status", "due_date"},
            exclude_unset=True,
        )
        # None means "not sent" except for the nullable due date
        return {k: v for k, v in data.items() if v is not None or k == "due_date"}


class TaskDeleteRequest(BaseModel):
    """Request body for task deletion."""

    expected_version: int
    op_id: str | None = None
    updated_at: str | None = None


class TaskResponse(BaseModel):
    """Task resource in responses."""

    id: str
    title: str
    description: str
    priority: str
    status: str
    due_date: str | None
    version: int
    created_at: str
    updated_at: str
    deleted: bool
    last_op_id: str | None


class ConflictResponse(BaseModel):
    """Body of a 409 response."""

    detail: str
    current: TaskResponse


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    tasks: int


# === Converters ===


def task_to_response(stored: StoredTask) -> TaskResponse:
    """Convert StoredTask to response model."""
    return TaskResponse(**stored.task.to_dict(), last_op_id=stored.last_op_id)
