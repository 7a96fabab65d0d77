"""Task API routes.

Writes use optimistic concurrency: the body carries expected_version and
the client's op_id. A stale write answers 409 with the current resource:

    {"detail": "...", "current": {...task...}}
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from tasksync.core.errors import NotFoundError, ValidationError
from tasksync.core.models import new_task_id, parse_datetime
from tasksync.server.api.deps import get_repository, require_token
from tasksync.server.repository import TaskRepository, VersionConflict
from tasksync.server.schemas import (
    ConflictResponse,
    TaskDeleteRequest,
    TaskResponse,
    TaskWriteRequest,
    task_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"], dependencies=[Depends(require_token)])

CONFLICT_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_409_CONFLICT: {"model": ConflictResponse},
}


def _conflict(e: VersionConflict) -> JSONResponse:
    logger.info("Rejected write to %s: %s", e.current.task.id, e)
    body = ConflictResponse(detail=str(e), current=task_to_response(e.current))
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump())


def _timestamp(value: str | None, name: str) -> datetime | None:
    try:
        return parse_datetime(value, name)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(
    repository: TaskRepository = Depends(get_repository),
    include_deleted: bool = False,
) -> list[TaskResponse]:
    """List tasks."""
    return [task_to_response(t) for t in repository.list(include_deleted=include_deleted)]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: str,
    repository: TaskRepository = Depends(get_repository),
) -> TaskResponse:
    """Get a task by id (tombstones included)."""
    stored = repository.get(task_id)
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task not found: {task_id}",
        )
    return task_to_response(stored)


@router.post(
    "/tasks",
    response_model=TaskResponse,
    responses=CONFLICT_RESPONSES,
)
def create_task(
    request: TaskWriteRequest,
    repository: TaskRepository = Depends(get_repository),
) -> TaskResponse | JSONResponse:
    """Create a task; the client may choose its id."""
    try:
        stored = repository.create(
            task_id=request.id or new_task_id(),
            fields=request.fields(),
            op_id=request.op_id,
            created_at=_timestamp(request.created_at, "created_at"),
            updated_at=_timestamp(request.updated_at, "updated_at"),
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except VersionConflict as e:
        return _conflict(e)
    return task_to_response(stored)


@router.put("/tasks/{task_id}", response_model=TaskResponse, responses=CONFLICT_RESPONSES)
def update_task(
    task_id: str,
    request: TaskWriteRequest,
    repository: TaskRepository = Depends(get_repository),
) -> TaskResponse | JSONResponse:
    """Update a task with conflict detection."""
    if request.expected_version is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="expected_version is required",
        )
    try:
        stored = repository.update(
            task_id=task_id,
            fields=request.fields(),
            expected_version=request.expected_version,
            op_id=request.op_id,
            updated_at=_timestamp(request.updated_at, "updated_at"),
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except VersionConflict as e:
        return _conflict(e)
    return task_to_response(stored)


@router.delete("/tasks/{task_id}", response_model=TaskResponse, responses=CONFLICT_RESPONSES)
def delete_task(
    task_id: str,
    request: TaskDeleteRequest,
    repository: TaskRepository = Depends(get_repository),
) -> TaskResponse | JSONResponse:
    """Delete a task (kept as a tombstone)."""
    try:
        stored = repository.delete(
            task_id=task_id,
            expected_version=request.expected_version,
            op_id=request.op_id,
            updated_at=_timestamp(request.updated_at, "updated_at"),
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except VersionConflict as e:
        return _conflict(e)
    return task_to_response(stored)
