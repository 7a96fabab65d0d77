"""Conflict resolution between a local operation and the server state.

Implements "last writer wins" on whole entities:
1. The server confirms our own write -> accept the server response
2. Somebody else wrote first -> the later updated_at wins wholesale
3. Equal timestamps -> the greater operation id wins
4. The server deleted a task we are still editing -> unresolvable

ConflictResolver.resolve() is pure: it reads its two inputs and nothing else,
so identical inputs always produce an identical Resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from tasksync.client.sync.types import OperationKind, SyncOperation
from tasksync.core.models import Task, parse_datetime

if TYPE_CHECKING:
    from tasksync.client.api import RemoteTask


class ConflictOutcome(Enum):
    """Result of conflict resolution."""

    ACCEPT_REMOTE = auto()  # Our write landed; server response is the truth
    KEEP_REMOTE = auto()  # Remote wrote later; local write is superseded
    KEEP_LOCAL = auto()  # Local wrote later; re-issue against the server version
    UNRESOLVABLE = auto()  # Remote deleted a task that is edited locally


@dataclass(frozen=True)
class LocalVersion:
    """The local side of a conflict.

    Attributes:
        op_id: Id of the operation that carried the write.
        kind: Kind of the operation.
        version: Optimistic local version of the task.
        base_version: Server version the write was based on (None for create).
        updated_at: Local modification time.
        payload: Snapshot of the task sent to the server.
    """

    op_id: str
    kind: OperationKind
    version: int
    base_version: int | None
    updated_at: datetime
    payload: dict[str, Any]

    @property
    def expected_version(self) -> int:
        """Server version a clean apply of this write produces."""
        return 1 if self.base_version is None else self.base_version + 1

    @classmethod
    def from_operation(cls, operation: SyncOperation) -> LocalVersion:
        """Build the local side from a SyncOperation."""
        updated_at = parse_datetime(operation.payload.get("updated_at"), "updated_at")
        if updated_at is None:
            updated_at = datetime.fromtimestamp(operation.created_at, UTC)
        return cls(
            op_id=operation.op_id,
            kind=operation.kind,
            version=operation.local_version,
            base_version=operation.base_version,
            updated_at=updated_at,
            payload=dict(operation.payload),
        )


@dataclass(frozen=True)
class Resolution:
    """Result of conflict resolution.

    Attributes:
        outcome: What the SyncManager should do.
        task: Server state to install (ACCEPT_REMOTE / KEEP_REMOTE), else None.
        superseded: True when a newer remote write replaced the local one.
        reason: Human-readable explanation.
    """

    outcome: ConflictOutcome
    task: Task | None = None
    superseded: bool = False
    reason: str = ""


class ConflictResolver:
    """Deterministic last-writer-wins resolver."""

    def resolve(self, local: LocalVersion, remote: RemoteTask, conflict: bool = False) -> Resolution:
        """Decide between a local write and the server state of the same task.

        Args:
            local: The local side.
            remote: Server resource (the 200 response, or the 409 `current`).
            conflict: True when the server refused the write (409).

        Returns:
            The resolution.
        """
        task = remote.task

        if remote.last_op_id is not None and remote.last_op_id == local.op_id:
            return Resolution(ConflictOutcome.ACCEPT_REMOTE, task, reason="server applied this operation")

        if task.deleted:
            if local.kind is OperationKind.DELETE:
                return Resolution(ConflictOutcome.ACCEPT_REMOTE, task, reason="already deleted remotely")
            return Resolution(
                ConflictOutcome.UNRESOLVABLE,
                reason=f"task {task.id} was deleted remotely while edited locally",
            )

        if not conflict and task.version == local.expected_version:
            return Resolution(ConflictOutcome.ACCEPT_REMOTE, task, reason="clean apply")

        if _local_wins(local, remote):
            return Resolution(
                ConflictOutcome.KEEP_LOCAL,
                reason=f"local write is newer than remote version {task.version}",
            )
        return Resolution(
            ConflictOutcome.KEEP_REMOTE,
            task,
            superseded=True,
            reason=f"remote version {task.version} is newer",
        )


def _local_wins(local: LocalVersion, remote: RemoteTask) -> bool:
    if local.updated_at != remote.task.updated_at:
        return local.updated_at > remote.task.updated_at
    # Tie: the greater operation id wins, a remote write without one loses
    if remote.last_op_id is None:
        return True
    return local.op_id > remote.last_op_id
