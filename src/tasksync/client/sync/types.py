"""Shared types for the sync pipeline.

This module provides:
- OperationKind, OperationStatus: Closed enums for sync operations
- SyncOperation: One durable, at-least-once-deliverable remote intent
- VALID_TRANSITIONS: The operation state machine
- SyncStats: Counters maintained by the SyncManager

States:
    QUEUED -> IN_FLIGHT -> SUCCEEDED
                        -> RETRY_SCHEDULED -> QUEUED
                        -> ABANDONED
                        -> FAILED (unresolvable conflict) -> QUEUED (manual)

All state transitions are validated.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tasksync.core.errors import InvalidTransitionError


class OperationKind(str, Enum):
    """Remote side effect requested by an operation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationStatus(str, Enum):
    """Lifecycle status of a sync operation."""

    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"


# Valid state transitions
VALID_TRANSITIONS: dict[OperationStatus, set[OperationStatus]] = {
    OperationStatus.QUEUED: {OperationStatus.IN_FLIGHT, OperationStatus.ABANDONED},
    OperationStatus.IN_FLIGHT: {
        OperationStatus.SUCCEEDED,
        OperationStatus.RETRY_SCHEDULED,
        OperationStatus.ABANDONED,
        OperationStatus.FAILED,
        OperationStatus.QUEUED,  # recovery after a crash mid-call
    },
    OperationStatus.RETRY_SCHEDULED: {OperationStatus.QUEUED},
    OperationStatus.FAILED: {OperationStatus.QUEUED},  # manual requeue
    OperationStatus.ABANDONED: {OperationStatus.QUEUED},  # manual requeue
    OperationStatus.SUCCEEDED: set(),  # Terminal
}

# Statuses the pipeline never leaves on its own
TERMINAL_STATUSES = frozenset(
    {OperationStatus.SUCCEEDED, OperationStatus.ABANDONED, OperationStatus.FAILED}
)

# Statuses re-submitted on startup
PENDING_STATUSES = frozenset(
    {OperationStatus.QUEUED, OperationStatus.IN_FLIGHT, OperationStatus.RETRY_SCHEDULED}
)

# Scheduler priority per kind (higher runs first): deletes avoid useless writes.
# Age breaks ties: the scheduler is FIFO within a priority, and each task only
# ever has its oldest pending operation submitted.
KIND_PRIORITY: dict[OperationKind, int] = {
    OperationKind.DELETE: 30,
    OperationKind.CREATE: 20,
    OperationKind.UPDATE: 10,
}


@dataclass
class SyncOperation:
    """A durable record of one intended remote-side effect.

    Attributes:
        kind: Create, update or delete.
        task_id: Target task.
        payload: Snapshot of the task at enqueue time (Task.to_dict()).
        seq: Monotonic sequence number assigned by the operation log.
        op_id: Unique id sent to the server; also the conflict tiebreak.
        base_version: Server version this write was based on (None for create).
        attempts: Number of attempts started so far.
        status: Lifecycle status.
        last_error: Message of the most recent failure.
        error_kind: Exception class name of the most recent failure.
        next_attempt_at: Wall-clock time before which a retry must not start.
        superseded: Succeeded, but a newer remote write won the conflict.
        dismissed: Acknowledged by the user; kept for inspection.
        created_at: Wall-clock creation time.
        history: Every status visited, in order.
    """

    kind: OperationKind
    task_id: str
    payload: dict[str, Any]
    seq: int | None = None
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    base_version: int | None = None
    attempts: int = 0
    status: OperationStatus = OperationStatus.QUEUED
    last_error: str | None = None
    error_kind: str | None = None
    next_attempt_at: float | None = None
    superseded: bool = False
    dismissed: bool = False
    created_at: float = field(default_factory=time.time)
    history: list[OperationStatus] = field(default_factory=lambda: [OperationStatus.QUEUED])

    def transition_to(self, new_status: OperationStatus) -> None:
        """Transition to a new status with validation."""
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot transition operation #{self.seq} "
                f"from {self.status.name} to {new_status.name}"
            )
        self.status = new_status
        self.history.append(new_status)

    def record_error(self, error: BaseException) -> None:
        """Preserve an error on the operation."""
        self.last_error = str(error) or type(error).__name__
        self.error_kind = type(error).__name__

    @property
    def is_terminal(self) -> bool:
        """Check if the pipeline is done with this operation."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_pending(self) -> bool:
        """Check if the operation still needs to be delivered."""
        return self.status in PENDING_STATUSES

    @property
    def priority(self) -> int:
        """Scheduler priority derived from the kind.

        Age is not part of the number; older operations of equal priority run
        first because they are submitted first.
        """
        return KIND_PRIORITY[self.kind]

    @property
    def local_version(self) -> int:
        """Optimistic local version captured in the payload."""
        return int(self.payload.get("version", 0))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for display or export."""
        return {
            "seq": self.seq,
            "op_id": self.op_id,
            "kind": self.kind.value,
            "task_id": self.task_id,
            "payload": self.payload,
            "base_version": self.base_version,
            "attempts": self.attempts,
            "status": self.status.value,
            "last_error": self.last_error,
            "error_kind": self.error_kind,
            "next_attempt_at": self.next_attempt_at,
            "superseded": self.superseded,
            "dismissed": self.dismissed,
            "created_at": self.created_at,
            "history": [s.value for s in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncOperation:
        """Create from a dictionary produced by to_dict()."""
        return cls(
            seq=data.get("seq"),
            op_id=data["op_id"],
            kind=OperationKind(data["kind"]),
            task_id=data["task_id"],
            payload=dict(data.get("payload") or {}),
            base_version=data.get("base_version"),
            attempts=int(data.get("attempts", 0)),
            status=OperationStatus(data.get("status", OperationStatus.QUEUED.value)),
            last_error=data.get("last_error"),
            error_kind=data.get("error_kind"),
            next_attempt_at=data.get("next_attempt_at"),
            superseded=bool(data.get("superseded", False)),
            dismissed=bool(data.get("dismissed", False)),
            created_at=float(data.get("created_at") or time.time()),
            history=[OperationStatus(s) for s in data.get("history", [])],
        )

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"SyncOperation(#{self.seq}, {self.kind.name}, "
            f"task={self.task_id!r}, status={self.status.name}, attempts={self.attempts})"
        )


@dataclass
class SyncStats:
    """Statistics for the SyncManager."""

    enqueued: int = 0
    attempts: int = 0
    succeeded: int = 0
    superseded: int = 0
    retries: int = 0
    abandoned: int = 0
    conflicts: int = 0
    unresolvable: int = 0
    recovered: int = 0
