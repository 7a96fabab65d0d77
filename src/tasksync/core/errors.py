"""Error taxonomy shared by the store, the sync pipeline and the API client.

Permanent errors (never retried):
- ValidationError, NotFoundError, AuthorizationError

Transient errors (retried per RetryPolicy):
- TransientNetworkError, RemoteServerError, RateLimitTimeout

Conflict handling:
- ConflictDetected is resolved automatically by the ConflictResolver
- UnresolvableConflict is surfaced to the user
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tasksync.client.sync.types import SyncOperation


class TaskSyncError(Exception):
    """Base exception for tasksync errors."""


class ValidationError(TaskSyncError):
    """Invalid input for a task mutation."""


class NotFoundError(TaskSyncError):
    """Task not found."""


class AuthorizationError(TaskSyncError):
    """Remote rejected the credentials (401/403)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(TaskSyncError):
    """Connection failure or call timeout talking to the remote."""


class RemoteServerError(TaskSyncError):
    """Remote answered with a 5xx-equivalent status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitTimeout(TaskSyncError):
    """No rate limit token became available before the deadline."""


class ConflictDetected(TaskSyncError):
    """Remote refused a write because its version moved on.

    Attributes:
        current: The server resource attached to the 409 response.
    """

    def __init__(self, message: str, current: Any = None) -> None:
        super().__init__(message)
        self.current = current


class UnresolvableConflict(TaskSyncError):
    """Conflict that cannot be merged, e.g. remote deleted a locally edited task."""


class AbandonedOperation(TaskSyncError):
    """A sync operation gave up after exhausting retries or hitting a permanent error."""

    def __init__(self, operation: SyncOperation) -> None:
        super().__init__(
            f"Operation #{operation.seq} ({operation.kind.value} {operation.task_id}) "
            f"abandoned: {operation.last_error}"
        )
        self.operation = operation


class InvalidTransitionError(TaskSyncError):
    """Raised when attempting an invalid operation state transition."""


class CancelledException(TaskSyncError):
    """Raised at a checkpoint when cancellation of a work item was requested."""
