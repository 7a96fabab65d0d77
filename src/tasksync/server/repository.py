"""In-memory task repository for the reference server.

Every write carries the version it expects the task to be at and the id of
the client operation that produced it. Writes against a stale version raise
VersionConflict with the current resource; replaying the operation that
produced the current version returns that version unchanged, so a client
retry after a lost response is harmless.

Deleted tasks are kept as tombstones.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from tasksync.core.errors import NotFoundError
from tasksync.core.models import Task, utcnow, validate_fields

logger = logging.getLogger(__name__)


class VersionConflict(Exception):
    """Raised when a write does not match the current version."""

    def __init__(self, message: str, current: StoredTask) -> None:
        super().__init__(message)
        self.current = current


@dataclass(frozen=True)
class StoredTask:
    """A task as stored by the server.

    Attributes:
        task: Server copy of the task.
        last_op_id: Client operation that produced this version.
    """

    task: Task
    last_op_id: str | None = None


class TaskRepository:
    """Thread-safe in-memory task storage with optimistic concurrency."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, StoredTask] = {}

    def get(self, task_id: str) -> StoredTask | None:
        """Get a task (tombstones included)."""
        with self._lock:
            return self._tasks.get(task_id)

    def list(self, include_deleted: bool = False) -> list[StoredTask]:
        """List tasks ordered by id."""
        with self._lock:
            rows = sorted(self._tasks.values(), key=lambda s: s.task.id)
        return [s for s in rows if include_deleted or not s.task.deleted]

    def create(
        self,
        task_id: str,
        fields: dict[str, Any],
        op_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> StoredTask:
        """Create a task at version 1.

        Raises:
            ValidationError: If the fields are invalid.
            VersionConflict: If the id is taken by another operation.
        """
        cleaned = validate_fields(fields)
        with self._lock:
            current = self._tasks.get(task_id)
            if current is not None:
                if op_id is not None and current.last_op_id == op_id:
                    return current
                raise VersionConflict(f"Task already exists: {task_id}", current)

            now = utcnow()
            task = Task(
                id=task_id,
                version=1,
                created_at=created_at or now,
                updated_at=updated_at or now,
                **cleaned,
            )
            stored = StoredTask(task, op_id)
            self._tasks[task_id] = stored
        logger.info("Created task %s", task_id)
        return stored

    def _check(self, task_id: str, expected_version: int, op_id: str | None) -> StoredTask | None:
        """Validate a write against the current row (lock held).

        Returns:
            The current row if this operation already produced it.
        """
        current = self._tasks.get(task_id)
        if current is None:
            raise NotFoundError(f"Task not found: {task_id}")
        if op_id is not None and current.last_op_id == op_id:
            return current
        if current.task.deleted:
            raise VersionConflict(f"Task was deleted: {task_id}", current)
        if current.task.version != expected_version:
            raise VersionConflict(
                f"Conflict detected: expected version {expected_version}, "
                f"but current version is {current.task.version}",
                current,
            )
        return None

    def update(
        self,
        task_id: str,
        fields: dict[str, Any],
        expected_version: int,
        op_id: str | None = None,
        updated_at: datetime | None = None,
    ) -> StoredTask:
        """Replace the editable fields of a task.

        Raises:
            NotFoundError: If the task never existed.
            ValidationError: If the fields are invalid.
            VersionConflict: If expected_version is stale or the task is deleted.
        """
        cleaned = validate_fields(fields, partial=True)
        with self._lock:
            replay = self._check(task_id, expected_version, op_id)
            if replay is not None:
                return replay
            current = self._tasks[task_id].task
            task = current.evolve(
                **cleaned,
                version=current.version + 1,
                updated_at=updated_at or utcnow(),
            )
            stored = StoredTask(task, op_id)
            self._tasks[task_id] = stored
        logger.info("Updated task %s to version %d", task_id, task.version)
        return stored

    def delete(
        self,
        task_id: str,
        expected_version: int,
        op_id: str | None = None,
        updated_at: datetime | None = None,
    ) -> StoredTask:
        """Tombstone a task.

        Raises:
            NotFoundError: If the task never existed.
            VersionConflict: If expected_version is stale or the task is deleted.
        """
        with self._lock:
            replay = self._check(task_id, expected_version, op_id)
            if replay is not None:
                return replay
            current = self._tasks[task_id].task
            task = current.evolve(
                deleted=True,
                version=current.version + 1,
                updated_at=updated_at or utcnow(),
            )
            stored = StoredTask(task, op_id)
            self._tasks[task_id] = stored
        logger.info("Deleted task %s", task_id)
        return stored

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for s in self._tasks.values() if not s.task.deleted)
