"""Durable log of sync operations.

This module provides:
- OperationLog: Protocol implemented by every backend
- MemoryOperationLog: Process-local log, used by tests and offline demos
- SQLiteOperationLog: SQLite-backed log that survives restarts

Rows are appended with a fresh sequence number and afterwards only updated
by the SyncManager. Terminal entries are never deleted; they are dismissed.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from tasksync.client.sync.types import (
    PENDING_STATUSES,
    OperationKind,
    OperationStatus,
    SyncOperation,
)
from tasksync.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class OperationLog(Protocol):
    """Protocol for durable operation storage."""

    def append(self, operation: SyncOperation) -> SyncOperation:
        """Persist a new operation and assign its seq."""
        ...

    def update(self, operation: SyncOperation) -> None:
        """Persist the current state of an existing operation."""
        ...

    def get(self, seq: int) -> SyncOperation | None:
        """Get an operation by seq."""
        ...

    def list(self, statuses: Iterable[OperationStatus] | None = None) -> list[SyncOperation]:
        """List operations in seq order, optionally filtered by status."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


def pending_operations(log: OperationLog) -> list[SyncOperation]:
    """Operations that still need delivery, in seq order."""
    return log.list(PENDING_STATUSES)


def get_operation(log: OperationLog, seq: int) -> SyncOperation:
    """Get an operation by seq.

    Raises:
        NotFoundError: If no such operation was logged.
    """
    op = log.get(seq)
    if op is None:
        raise NotFoundError(f"Operation not found: {seq}")
    return op


def dismiss_operation(log: OperationLog, seq: int) -> SyncOperation:
    """Acknowledge an abandoned or failed operation; the record is kept.

    Raises:
        NotFoundError: If no such operation was logged.
        ValidationError: If the operation is not abandoned or failed.
    """
    op = get_operation(log, seq)
    if op.status not in (OperationStatus.ABANDONED, OperationStatus.FAILED):
        raise ValidationError(
            f"Only abandoned or failed operations can be dismissed (#{seq} is {op.status.value})"
        )
    op.dismissed = True
    log.update(op)
    return op


def requeue_operation(log: OperationLog, seq: int) -> SyncOperation:
    """Reset an abandoned or failed operation to QUEUED with a fresh attempt budget.

    Raises:
        NotFoundError: If no such operation was logged.
        InvalidTransitionError: If the operation is not abandoned or failed.
    """
    op = get_operation(log, seq)
    op.transition_to(OperationStatus.QUEUED)
    op.attempts = 0
    op.dismissed = False
    op.next_attempt_at = None
    log.update(op)
    return op


class MemoryOperationLog:
    """In-memory operation log.

    Stores copies so that callers mutating their SyncOperation objects do
    not change the log behind its back.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[int, SyncOperation] = {}
        self._next_seq = 1

    def append(self, operation: SyncOperation) -> SyncOperation:
        with self._lock:
            operation.seq = self._next_seq
            self._next_seq += 1
            self._rows[operation.seq] = copy.deepcopy(operation)
        return operation

    def update(self, operation: SyncOperation) -> None:
        if operation.seq is None:
            raise ValueError("Cannot update an operation that was never appended")
        with self._lock:
            if operation.seq not in self._rows:
                raise KeyError(operation.seq)
            self._rows[operation.seq] = copy.deepcopy(operation)

    def get(self, seq: int) -> SyncOperation | None:
        with self._lock:
            row = self._rows.get(seq)
            return copy.deepcopy(row) if row is not None else None

    def list(self, statuses: Iterable[OperationStatus] | None = None) -> list[SyncOperation]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                copy.deepcopy(op)
                for seq, op in sorted(self._rows.items())
                if wanted is None or op.status in wanted
            ]
        return rows

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class SQLiteOperationLog:
    """SQLite-based operation log.

    Each operation is one row of the sync_operations table. The seq column
    is an AUTOINCREMENT primary key, so sequence numbers are never reused
    even after a crash.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the log database.

        Args:
            db_path: Path to the SQLite file, or ":memory:".
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sync_operations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                op_id TEXT NOT NULL UNIQUE,
                kind TEXT NOT NULL,
                task_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                base_version INTEGER,
                attempts INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                last_error TEXT,
                error_kind TEXT,
                next_attempt_at REAL,
                superseded INTEGER NOT NULL DEFAULT 0,
                dismissed INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                history TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sync_operations_status
                ON sync_operations(status);
            CREATE INDEX IF NOT EXISTS idx_sync_operations_task
                ON sync_operations(task_id);
        """)

    @staticmethod
    def _from_row(row: sqlite3.Row) -> SyncOperation:
        return SyncOperation(
            seq=row["seq"],
            op_id=row["op_id"],
            kind=OperationKind(row["kind"]),
            task_id=row["task_id"],
            payload=json.loads(row["payload"]),
            base_version=row["base_version"],
            attempts=row["attempts"],
            status=OperationStatus(row["status"]),
            last_error=row["last_error"],
            error_kind=row["error_kind"],
            next_attempt_at=row["next_attempt_at"],
            superseded=bool(row["superseded"]),
            dismissed=bool(row["dismissed"]),
            created_at=row["created_at"],
            history=[OperationStatus(s) for s in json.loads(row["history"])],
        )

    def append(self, operation: SyncOperation) -> SyncOperation:
        """Insert a new operation; its seq is assigned by SQLite."""
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO sync_operations
                    (op_id, kind, task_id, payload, base_version, attempts, status,
                     last_error, error_kind, next_attempt_at, superseded, dismissed,
                     created_at, history)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    operation.op_id,
                    operation.kind.value,
                    operation.task_id,
                    json.dumps(operation.payload),
                    operation.base_version,
                    operation.attempts,
                    operation.status.value,
                    operation.last_error,
                    operation.error_kind,
                    operation.next_attempt_at,
                    int(operation.superseded),
                    int(operation.dismissed),
                    operation.created_at,
                    json.dumps([s.value for s in operation.history]),
                ),
            )
            operation.seq = cursor.lastrowid
        logger.debug("Appended %r", operation)
        return operation

    def update(self, operation: SyncOperation) -> None:
        """Write back every mutable column of an operation."""
        if operation.seq is None:
            raise ValueError("Cannot update an operation that was never appended")
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE sync_operations SET
                    payload = ?, base_version = ?, attempts = ?, status = ?,
                    last_error = ?, error_kind = ?, next_attempt_at = ?,
                    superseded = ?, dismissed = ?, history = ?
                WHERE seq = ?
                """,
                (
                    json.dumps(operation.payload),
                    operation.base_version,
                    operation.attempts,
                    operation.status.value,
                    operation.last_error,
                    operation.error_kind,
                    operation.next_attempt_at,
                    int(operation.superseded),
                    int(operation.dismissed),
                    json.dumps([s.value for s in operation.history]),
                    operation.seq,
                ),
            )
            if cursor.rowcount == 0:
                raise KeyError(operation.seq)

    def get(self, seq: int) -> SyncOperation | None:
        """Get an operation by seq."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sync_operations WHERE seq = ?", (seq,)
            ).fetchone()
        if row is None:
            return None
        return self._from_row(row)

    def list(self, statuses: Iterable[OperationStatus] | None = None) -> list[SyncOperation]:
        """List operations in seq order, optionally filtered by status."""
        query = "SELECT * FROM sync_operations"
        params: tuple[str, ...] = ()
        if statuses is not None:
            values = tuple(s.value for s in statuses)
            if not values:
                return []
            query += f" WHERE status IN ({', '.join('?' for _ in values)})"
            params = values
        query += " ORDER BY seq"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._from_row(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM sync_operations").fetchone()[0])
