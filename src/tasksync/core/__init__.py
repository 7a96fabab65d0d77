"""Core module - Shared task model, error taxonomy and configuration."""

from tasksync.core.config import (
    RateLimitConfig,
    RemoteConfig,
    RetryConfig,
    SyncConfig,
    load_config,
)
from tasksync.core.errors import (
    AbandonedOperation,
    AuthorizationError,
    CancelledException,
    ConflictDetected,
    InvalidTransitionError,
    NotFoundError,
    RateLimitTimeout,
    RemoteServerError,
    TaskSyncError,
    TransientNetworkError,
    UnresolvableConflict,
    ValidationError,
)
from tasksync.core.models import Priority, Task, TaskFilter, TaskStatus

__all__ = [
    # Config
    "RateLimitConfig",
    "RemoteConfig",
    "RetryConfig",
    "SyncConfig",
    "load_config",
    # Errors
    "AbandonedOperation",
    "AuthorizationError",
    "CancelledException",
    "ConflictDetected",
    "InvalidTransitionError",
    "NotFoundError",
    "RateLimitTimeout",
    "RemoteServerError",
    "TaskSyncError",
    "TransientNetworkError",
    "UnresolvableConflict",
    "ValidationError",
    # Models
    "Priority",
    "Task",
    "TaskFilter",
    "TaskStatus",
]
