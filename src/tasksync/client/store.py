"""Local task store.

This module provides:
- TaskStore: Thread-safe in-memory replica of the user's tasks
- TaskChange: Change event emitted on every committed mutation

Architecture:
    Local mutations (create/update/delete) are accepted immediately and
    emitted as TaskChange events with origin LOCAL. The SyncManager turns
    those into durable sync operations. Server-confirmed state comes back
    through apply_remote()/remove_remote(), emitted with origin REMOTE.

    Mutations on one task are serialized by a per-task lock, so a
    remote-applied update never interleaves with a concurrent local edit.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from tasksync.core.errors import NotFoundError, ValidationError
from tasksync.core.models import (
    Task,
    TaskFilter,
    new_task_id,
    utcnow,
    validate_fields,
)

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """What happened to a task."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    REMOVED = "removed"  # tombstone dropped after remote confirmation


class ChangeOrigin(str, Enum):
    """Where a change came from."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class TaskChange:
    """A committed change to the store.

    Attributes:
        kind: Type of change.
        task: Snapshot of the task after the change.
        origin: LOCAL for user mutations, REMOTE for server-applied state.
        previous_version: Version before the change (None on create).
    """

    kind: ChangeKind
    task: Task
    origin: ChangeOrigin
    previous_version: int | None = None


ChangeListener = Callable[[TaskChange], None]


class TaskStore:
    """In-memory task store with invariant enforcement.

    Invariants:
    - title is never empty
    - version strictly increases on every mutation

    Usage:
        store = TaskStore()
        unsubscribe = store.subscribe(print)
        task = store.create({"title": "Buy milk"})
        store.update(task.id, {"status": "completed"})
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize an empty store.

        Args:
            clock: Source of timestamps (defaults to UTC now).
        """
        self._clock = clock or utcnow
        self._tasks: dict[str, Task] = {}
        self._lock = threading.RLock()
        self._entity_locks: dict[str, threading.RLock] = {}
        self._listeners: list[ChangeListener] = []

    def _entity_lock(self, task_id: str) -> threading.RLock:
        with self._lock:
            lock = self._entity_locks.get(task_id)
            if lock is None:
                lock = threading.RLock()
                self._entity_locks[task_id] = lock
            return lock

    def locked(self, task_id: str) -> threading.RLock:
        """Per-task lock, for callers that must check-then-apply atomically.

        Usage:
            with store.locked(task_id):
                if nothing_pending(task_id):
                    store.apply_remote(task)
        """
        return self._entity_lock(task_id)

    def _require(self, task_id: str) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None or task.deleted:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def _commit(self, task: Task) -> None:
        with self._lock:
            self._tasks[task.id] = task

    # === Subscriptions ===

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener for committed changes.

        Args:
            listener: Called with every TaskChange, local or remote.

        Returns:
            A function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: TaskChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("Task change listener failed for %s", change.task.id)

    # === Local mutations ===

    def create(self, data: dict[str, Any]) -> Task:
        """Create a task.

        Args:
            data: Editable fields; title is required.

        Returns:
            The new task, at version 1.

        Raises:
            ValidationError: If the title is empty or a field is invalid.
        """
        fields = validate_fields(data)
        now = self._clock()
        task = Task(id=new_task_id(), version=1, created_at=now, updated_at=now, **fields)

        with self._entity_lock(task.id):
            self._commit(task)
            logger.debug("Created task %s", task.id)
            self._emit(TaskChange(ChangeKind.CREATED, task, ChangeOrigin.LOCAL))
        return task

    def update(self, task_id: str, patch: dict[str, Any]) -> Task:
        """Apply a partial update.

        Raises:
            NotFoundError: If the task does not exist.
            ValidationError: If the patch is empty or invalid.
        """
        fields = validate_fields(patch, partial=True)
        if not fields:
            raise ValidationError("Patch does not change any field")

        with self._entity_lock(task_id):
            current = self._require(task_id)
            task = current.evolve(
                **fields,
                version=current.version + 1,
                updated_at=self._clock(),
            )
            self._commit(task)
            logger.debug("Updated task %s to version %d", task_id, task.version)
            self._emit(
                TaskChange(ChangeKind.UPDATED, task, ChangeOrigin.LOCAL, current.version)
            )
        return task

    def delete(self, task_id: str) -> Task:
        """Delete a task.

        The task is kept as a tombstone until the remote confirms the delete.

        Raises:
            NotFoundError: If the task does not exist.
        """
        with self._entity_lock(task_id):
            current = self._require(task_id)
            task = current.evolve(
                deleted=True,
                version=current.version + 1,
                updated_at=self._clock(),
            )
            self._commit(task)
            logger.debug("Deleted task %s", task_id)
            self._emit(
                TaskChange(ChangeKind.DELETED, task, ChangeOrigin.LOCAL, current.version)
            )
        return task

    # === Queries ===

    def get(self, task_id: str, include_deleted: bool = False) -> Task:
        """Get a task by id.

        Raises:
            NotFoundError: If the task does not exist (or is deleted).
        """
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None or (task.deleted and not include_deleted):
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def list(self, task_filter: TaskFilter | None = None) -> list[Task]:
        """List tasks, most recently updated first (ties broken by id)."""
        criteria = task_filter or TaskFilter()
        with self._lock:
            tasks = [t for t in self._tasks.values() if criteria.matches(t)]
        tasks.sort(key=lambda t: t.id)
        tasks.sort(key=lambda t: t.updated_at, reverse=True)
        return tasks

    def __len__(self) -> int:
        """Number of live (non-deleted) tasks."""
        with self._lock:
            return sum(1 for t in self._tasks.values() if not t.deleted)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)  # type: ignore[arg-type]
        return task is not None and not task.deleted

    # === Remote-applied changes (SyncManager only) ===

    def apply_remote(self, remote: Task) -> Task:
        """Install server-confirmed state for a task.

        If the stored task already has the same version and content this is
        a no-op. Otherwise the stored version becomes
        max(remote.version, stored.version + 1).

        Args:
            remote: Task as returned by the server.

        Returns:
            The stored task after the change.
        """
        with self._entity_lock(remote.id):
            with self._lock:
                current = self._tasks.get(remote.id)

            if current is None:
                task = remote
                kind = ChangeKind.CREATED
                previous = None
            else:
                if current.version == remote.version and current.content() == remote.content():
                    return current
                task = remote.evolve(version=max(remote.version, current.version + 1))
                kind = ChangeKind.DELETED if task.deleted else ChangeKind.UPDATED
                previous = current.version

            self._commit(task)
            logger.debug("Applied remote state for %s (version %d)", task.id, task.version)
            self._emit(TaskChange(kind, task, ChangeOrigin.REMOTE, previous))
        return task

    def remove_remote(self, task_id: str) -> Task | None:
        """Drop a task after the remote confirmed its deletion.

        Returns:
            The removed task, or None if it was not stored.
        """
        with self._entity_lock(task_id):
            with self._lock:
                task = self._tasks.pop(task_id, None)
            if task is None:
                return None
            logger.debug("Removed task %s", task_id)
            self._emit(TaskChange(ChangeKind.REMOVED, task, ChangeOrigin.REMOTE, task.version))
        return task
