"""Sync pipeline between the local TaskStore and the remote endpoint.

Architecture:
    TaskStore → SyncManager → OperationLog
                    ↓
    ConcurrencyScheduler (WorkQueue) → RateLimiter → RemoteClient
                    ↓
    RetryPolicy / ConflictResolver → TaskStore.apply_remote

Components:
- **SyncManager**: Turns local mutations into durable operations and drives them
- **OperationLog**: Append-only log of SyncOperations (SQLite or in-memory)
- **ConcurrencyScheduler**: Bounded worker pool over a priority WorkQueue
- **RateLimiter**: Token bucket for outbound calls
- **RetryPolicy**: Exponential backoff with optional jitter
- **ConflictResolver**: Last-writer-wins merge of local and remote versions
"""

from tasksync.client.sync.conflict import (
    ConflictOutcome,
    ConflictResolver,
    LocalVersion,
    Resolution,
)
from tasksync.client.sync.manager import SyncManager
from tasksync.client.sync.oplog import (
    MemoryOperationLog,
    OperationLog,
    SQLiteOperationLog,
)
from tasksync.client.sync.queue import WorkItem, WorkQueue
from tasksync.client.sync.ratelimit import RateLimiter
from tasksync.client.sync.retry import ErrorClass, RetryPolicy, classify_error
from tasksync.client.sync.scheduler import (
    ConcurrencyScheduler,
    PoolState,
    WorkContext,
    WorkHandle,
)
from tasksync.client.sync.types import (
    OperationKind,
    OperationStatus,
    SyncOperation,
    SyncStats,
)

__all__ = [
    # Conflict resolution
    "ConflictOutcome",
    "ConflictResolver",
    "LocalVersion",
    "Resolution",
    # Manager
    "SyncManager",
    # Operation log
    "MemoryOperationLog",
    "OperationLog",
    "SQLiteOperationLog",
    # Scheduling
    "ConcurrencyScheduler",
    "PoolState",
    "WorkContext",
    "WorkHandle",
    "WorkItem",
    "WorkQueue",
    # Rate limiting and retry
    "ErrorClass",
    "RateLimiter",
    "RetryPolicy",
    "classify_error",
    # Types
    "OperationKind",
    "OperationStatus",
    "SyncOperation",
    "SyncStats",
]
