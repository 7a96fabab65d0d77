"""Sync manager reconciling local task mutations with the remote endpoint.

This module provides:
- SyncManager: Owns the durable operation log and drives every operation
  through scheduler, rate limiter, retry policy and conflict resolver

Pipeline:
    TaskStore change (origin LOCAL)
        -> SyncOperation appended to the log (QUEUED)
        -> submitted to the ConcurrencyScheduler (key = task id)
        -> worker: rate token, remote call
            200  -> ConflictResolver -> TaskStore.apply_remote -> SUCCEEDED
            409  -> ConflictResolver -> KEEP_REMOTE (superseded) / re-issue once
            transient error -> RETRY_SCHEDULED, re-submitted with not_before
            permanent error -> ABANDONED (error preserved, user notified)
            remote deleted  -> FAILED (unresolvable, user notified)

Only the oldest pending operation of a task is ever handed to the scheduler;
the next one is submitted when it reaches a terminal state. This keeps
same-task operations in sequence order across retries.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING

from tasksync.client.api import RemoteClient
from tasksync.client.notifications import NotificationHub, NotificationType, SyncNotification
from tasksync.client.store import ChangeKind, ChangeOrigin, TaskChange, TaskStore
from tasksync.client.sync.conflict import ConflictOutcome, ConflictResolver, LocalVersion, Resolution
from tasksync.client.sync.oplog import (
    OperationLog,
    SQLiteOperationLog,
    dismiss_operation,
    get_operation,
    pending_operations,
    requeue_operation,
)
from tasksync.client.sync.ratelimit import RateLimiter
from tasksync.client.sync.retry import ErrorClass, RetryPolicy, classify_error
from tasksync.client.sync.scheduler import ConcurrencyScheduler, WorkContext, WorkHandle
from tasksync.client.sync.types import (
    OperationKind,
    OperationStatus,
    SyncOperation,
    SyncStats,
)
from tasksync.core.config import SyncConfig
from tasksync.core.errors import (
    AbandonedOperation,
    CancelledException,
    ConflictDetected,
    NotFoundError,
    UnresolvableConflict,
    ValidationError,
)

if TYPE_CHECKING:
    from tasksync.client.api import RemoteAPI, RemoteTask
    from tasksync.core.models import Task

logger = logging.getLogger(__name__)

_CHANGE_TO_KIND = {
    ChangeKind.CREATED: OperationKind.CREATE,
    ChangeKind.UPDATED: OperationKind.UPDATE,
    ChangeKind.DELETED: OperationKind.DELETE,
}

# Statuses a worker may pick an operation up from
_RUNNABLE = (OperationStatus.QUEUED, OperationStatus.RETRY_SCHEDULED)


class SyncManager:
    """Offline-first synchronization of a TaskStore with a remote endpoint.

    Local mutations are logged as soon as the store commits them, whether or
    not the manager is running. start() recovers pending operations from the
    log and begins delivering them.

    Usage:
        store = TaskStore()
        manager = SyncManager(store, RemoteClient(config.client_remote()), config)
        manager.start()

        task = store.create({"title": "Buy milk"})
        manager.drain(timeout=10)

        manager.stop()
    """

    def __init__(
        self,
        store: TaskStore,
        remote: RemoteAPI,
        config: SyncConfig | None = None,
        oplog: OperationLog | None = None,
        scheduler: ConcurrencyScheduler | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        resolver: ConflictResolver | None = None,
        notifications: NotificationHub | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the manager and start logging local mutations.

        Args:
            store: Local task store to mirror.
            remote: Remote endpoint (RemoteClient or a compatible fake).
            config: Pipeline configuration (defaults when omitted).
            oplog: Durable operation log (in-memory SQLite by default).
            scheduler: Worker pool (sized from config by default).
            rate_limiter: Token bucket (from config by default).
            retry_policy: Backoff policy (from config by default).
            resolver: Conflict resolver.
            notifications: Channel for user-facing events.
            clock: Wall-clock time source for next_attempt_at.
            monotonic: Monotonic time source for scheduler gates.
        """
        self._config = config or SyncConfig()
        self._store = store
        self._remote = remote
        self._log: OperationLog = oplog if oplog is not None else SQLiteOperationLog(":memory:")
        self._scheduler = scheduler or ConcurrencyScheduler(max_workers=self._config.concurrency_limit)
        self._limiter = rate_limiter or RateLimiter.from_config(self._config.rate_limit)
        self._retry = retry_policy or RetryPolicy.from_config(self._config.retry)
        self._resolver = resolver or ConflictResolver()
        self._notifications = notifications or NotificationHub()
        self._clock = clock
        self._monotonic = monotonic

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._running = False

        # Live pending operations: seq -> operation
        self._ops: dict[int, SyncOperation] = {}
        # Pending seqs per task, oldest first
        self._task_queues: dict[str, deque[int]] = {}
        # Scheduler handles of submitted operations
        self._handles: dict[int, WorkHandle] = {}
        # Last version confirmed by the server, per task
        self._server_versions: dict[str, int] = {}

        self._stats = SyncStats()
        self._unsubscribe_store = store.subscribe(self._on_change)

    @classmethod
    def from_config(
        cls,
        store: TaskStore,
        config: SyncConfig,
        remote: RemoteAPI | None = None,
    ) -> SyncManager:
        """Build a manager with a SQLite log at config.db_path.

        Raises:
            ValidationError: If no remote is given and none is configured.
        """
        if remote is None:
            if config.remote is None:
                raise ValidationError("No remote server configured")
            remote = RemoteClient(config.client_remote())
        return cls(store, remote, config, oplog=SQLiteOperationLog(config.db_path))

    # === Properties ===

    @property
    def stats(self) -> SyncStats:
        """Get pipeline statistics."""
        return self._stats

    @property
    def scheduler(self) -> ConcurrencyScheduler:
        """The worker pool."""
        return self._scheduler

    @property
    def notifications(self) -> NotificationHub:
        """Channel for user-facing sync events."""
        return self._notifications

    @property
    def is_running(self) -> bool:
        """Check if operations are being delivered."""
        return self._running

    def subscribe(self, listener: Callable[[SyncNotification], None]) -> Callable[[], None]:
        """Register a listener for abandoned, failed and superseded operations.

        Returns:
            A function that removes the listener.
        """
        return self._notifications.subscribe(listener)

    # === Lifecycle ===

    def start(self) -> None:
        """Recover pending operations from the log and start delivering."""
        with self._lock:
            if self._running:
                logger.warning("SyncManager already running")
                return

            self._recover()
            self._running = True
            self._scheduler.start()
            for queue in self._task_queues.values():
                if queue:
                    self._submit(self._ops[queue[0]])

        logger.info("SyncManager started (%d pending operations)", len(self._ops))

    def stop(self, timeout: float = 10.0) -> None:
        """Stop delivering; pending operations stay in the log.

        Local mutations keep being logged while stopped.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
        self._scheduler.stop(timeout=timeout)
        with self._lock:
            self._handles.clear()
            self._changed.notify_all()
        logger.info("SyncManager stopped")

    def close(self) -> None:
        """Stop, detach from the store and close the log."""
        self.stop()
        self._unsubscribe_store()
        self._log.close()

    def __enter__(self) -> SyncManager:
        """Context manager entry: start delivering."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit: close."""
        self.close()

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until every submitted operation settled (retries included).

        Returns:
            True if drained, False on timeout.
        """
        return self._scheduler.drain(timeout=timeout)

    def _recover(self) -> None:
        """Load non-terminal log entries (lock held).

        Entries left IN_FLIGHT by a crash are reset to QUEUED; the server
        deduplicates a repeated write through its op_id.
        """
        for op in pending_operations(self._log):
            if op.seq in self._ops:
                continue
            if op.status is OperationStatus.IN_FLIGHT:
                op.transition_to(OperationStatus.QUEUED)
                self._log.update(op)
                self._stats.recovered += 1
                logger.info("Recovered interrupted %r", op)
            self._track(op)

    def _track(self, op: SyncOperation) -> None:
        """Register a pending operation in seq order (lock held)."""
        self._ops[op.seq] = op
        queue = self._task_queues.setdefault(op.task_id, deque())
        queue.append(op.seq)
        if len(queue) > 1 and queue[-2] > op.seq:
            self._task_queues[op.task_id] = deque(sorted(queue))

    # === Enqueue ===

    def _on_change(self, change: TaskChange) -> None:
        """Store listener: turn a local mutation into a logged operation.

        Called inside the store's per-task lock.
        """
        if change.origin is not ChangeOrigin.LOCAL:
            return
        kind = _CHANGE_TO_KIND.get(change.kind)
        if kind is None:
            return

        with self._lock:
            base_version = None
            if kind is not OperationKind.CREATE:
                base_version = self._server_versions.get(change.task.id, change.previous_version)
            op = SyncOperation(
                kind=kind,
                task_id=change.task.id,
                payload=change.task.to_dict(),
                base_version=base_version,
            )
            self._log.append(op)
            self._stats.enqueued += 1
            self._track(op)
            logger.debug("Enqueued %r", op)

            queue = self._task_queues[op.task_id]
            if self._running and queue[0] == op.seq:
                self._submit(op)

    def _submit(self, op: SyncOperation) -> None:
        """Hand an operation to the scheduler (lock held)."""
        not_before = None
        if op.next_attempt_at is not None:
            not_before = self._monotonic() + max(0.0, op.next_attempt_at - self._clock())
        try:
            self._handles[op.seq] = self._scheduler.submit(
                partial(self._execute, op.seq),
                priority=op.priority,
                key=op.task_id,
                not_before=not_before,
                name=f"op#{op.seq}",
            )
        except RuntimeError:
            # Scheduler is stopping; the operation stays pending in the log
            logger.debug("Not submitting %r: scheduler stopping", op)

    def _has_outstanding(self, task_id: str) -> bool:
        """Whether an operation of the task is with the scheduler (lock held)."""
        return any(
            op.task_id == task_id
            for seq, op in self._ops.items()
            if seq in self._handles
        )

    # === Execution (worker threads) ===

    def _execute(self, seq: int, ctx: WorkContext) -> OperationStatus:
        """Run one attempt of an operation."""
        ctx.checkpoint()

        with self._lock:
            op = self._ops.get(seq)
            if op is None or op.status not in _RUNNABLE:
                # Dismissed or finished through another path
                return op.status if op else OperationStatus.SUCCEEDED
            if op.status is OperationStatus.RETRY_SCHEDULED:
                op.transition_to(OperationStatus.QUEUED)
            op.transition_to(OperationStatus.IN_FLIGHT)
            op.attempts += 1
            op.next_attempt_at = None
            if op.kind is not OperationKind.CREATE:
                op.base_version = self._server_versions.get(op.task_id, op.base_version)
                if op.base_version is None:
                    op.base_version = max(op.local_version - 1, 1)
            self._log.update(op)
            self._stats.attempts += 1

        logger.debug("Attempt %d of %r", op.attempts, op)
        try:
            self._limiter.acquire(timeout=self._config.rate_limit.acquire_timeout)
            ctx.checkpoint()
            self._deliver(op)
        except CancelledException:
            with self._lock:
                op.transition_to(OperationStatus.QUEUED)
                self._log.update(op)
            raise
        except Exception as e:
            self._handle_failure(op, e)
        return op.status

    def _call(self, op: SyncOperation, reissue: bool = False) -> RemoteTask:
        """Perform the remote call for an operation."""
        if op.kind is OperationKind.CREATE and not reissue:
            return self._remote.create_task(op.payload, op.op_id)
        expected = op.base_version if op.base_version is not None else op.local_version - 1
        if op.kind is OperationKind.DELETE:
            return self._remote.delete_task(
                op.task_id, expected, op.op_id, op.payload.get("updated_at")
            )
        return self._remote.update_task(op.task_id, op.payload, expected, op.op_id)

    def _deliver(self, op: SyncOperation) -> None:
        """Call the remote and reconcile the outcome."""
        local = LocalVersion.from_operation(op)
        try:
            remote = self._call(op)
            resolution = self._resolver.resolve(local, remote)
        except ConflictDetected as e:
            with self._lock:
                self._stats.conflicts += 1
            if e.current is None:
                raise
            resolution = self._resolver.resolve(local, e.current, conflict=True)
            logger.info("Conflict on %r: %s", op, resolution.reason)

            if resolution.outcome is ConflictOutcome.KEEP_LOCAL:
                # Local is newer: write it again on top of the server version
                with self._lock:
                    op.base_version = e.current.version
                    self._server_versions[op.task_id] = e.current.version
                    self._log.update(op)
                remote = self._call(op, reissue=True)
                resolution = Resolution(ConflictOutcome.ACCEPT_REMOTE, remote.task, reason="re-issued")
        except NotFoundError:
            if op.kind is OperationKind.DELETE:
                self._complete(op, None, superseded=False)
                return
            if op.kind is OperationKind.UPDATE:
                raise UnresolvableConflict(
                    f"task {op.task_id} was deleted remotely while edited locally"
                ) from None
            raise

        if resolution.outcome is ConflictOutcome.UNRESOLVABLE:
            raise UnresolvableConflict(resolution.reason)
        if resolution.outcome is ConflictOutcome.KEEP_LOCAL:
            # 200 but not recognizably ours: the server took the write anyway
            resolution = Resolution(ConflictOutcome.ACCEPT_REMOTE, remote.task)
        self._complete(op, resolution.task, superseded=resolution.superseded)

    def _complete(self, op: SyncOperation, task: Task | None, superseded: bool) -> None:
        """Install the server state and mark the operation succeeded."""
        with self._store.locked(op.task_id):
            with self._lock:
                if task is not None:
                    self._server_versions[op.task_id] = task.version
                else:
                    self._server_versions.pop(op.task_id, None)
                later_pending = len(self._task_queues.get(op.task_id, ())) > 1

            if not later_pending:
                if task is None or task.deleted:
                    self._store.remove_remote(op.task_id)
                else:
                    self._store.apply_remote(task)

            with self._lock:
                op.superseded = superseded
                op.transition_to(OperationStatus.SUCCEEDED)
                self._log.update(op)
                self._stats.succeeded += 1
                if superseded:
                    self._stats.superseded += 1
                self._finish(op)

        logger.info("%r succeeded%s", op, " (superseded)" if superseded else "")
        if superseded:
            self._notify(NotificationType.SUPERSEDED, op, f"A newer remote version replaced your change to task {op.task_id}")

    def _handle_failure(self, op: SyncOperation, error: Exception) -> None:
        """Retry, abandon or fail an operation after an error."""
        error_class = classify_error(error)
        notification: NotificationType | None = None

        with self._lock:
            op.record_error(error)

            if isinstance(error, UnresolvableConflict):
                op.transition_to(OperationStatus.FAILED)
                self._stats.unresolvable += 1
                notification = NotificationType.UNRESOLVABLE
            elif self._retry.should_retry(error, op.attempts) or (
                error_class is ErrorClass.CONFLICT and op.attempts < self._retry.max_attempts
            ):
                delay = self._retry.next_delay(op.attempts)
                op.next_attempt_at = self._clock() + delay
                op.transition_to(OperationStatus.RETRY_SCHEDULED)
                self._stats.retries += 1
                logger.info("%r failed (%s), retrying in %.2fs", op, op.last_error, delay)
            else:
                op.transition_to(OperationStatus.ABANDONED)
                self._stats.abandoned += 1
                notification = NotificationType.ABANDONED

            self._log.update(op)
            if op.status is OperationStatus.RETRY_SCHEDULED:
                if self._running:
                    self._submit(op)
            else:
                logger.warning("%r %s: %s", op, op.status.value, op.last_error)
                self._finish(op)

        if notification is not None:
            self._notify(notification, op, op.last_error or "")

    def _finish(self, op: SyncOperation) -> None:
        """Drop a terminal operation and submit the task's next one (lock held)."""
        self._ops.pop(op.seq, None)
        self._handles.pop(op.seq, None)
        queue = self._task_queues.get(op.task_id)
        if queue is not None:
            if op.seq in queue:
                queue.remove(op.seq)
            if not queue:
                del self._task_queues[op.task_id]
            elif self._running and queue[0] not in self._handles:
                self._submit(self._ops[queue[0]])
        self._changed.notify_all()

    def _notify(self, kind: NotificationType, op: SyncOperation, message: str) -> None:
        snapshot = SyncOperation.from_dict(op.to_dict())
        self._notifications.publish(SyncNotification(kind, snapshot, message))

    # === Inspection and administration ===

    def operations(self, status: OperationStatus | None = None) -> list[SyncOperation]:
        """List logged operations in seq order, optionally by status."""
        return self._log.list([status] if status is not None else None)

    def pending(self) -> list[SyncOperation]:
        """Operations not yet delivered."""
        return pending_operations(self._log)

    def get_operation(self, seq: int) -> SyncOperation:
        """Get an operation by seq.

        Raises:
            NotFoundError: If no such operation was logged.
        """
        return get_operation(self._log, seq)

    def dismiss(self, seq: int) -> SyncOperation:
        """Acknowledge an abandoned or failed operation; it stays in the log.

        Raises:
            NotFoundError: If no such operation was logged.
            ValidationError: If the operation is not abandoned or failed.
        """
        with self._lock:
            op = dismiss_operation(self._log, seq)
        logger.info("Dismissed %r", op)
        return op

    def requeue(self, seq: int) -> SyncOperation:
        """Put an abandoned or failed operation back into the pipeline.

        Raises:
            NotFoundError: If no such operation was logged.
            InvalidTransitionError: If the operation is not abandoned or failed.
        """
        with self._lock:
            op = requeue_operation(self._log, seq)
            self._track(op)
            # A task with work already submitted hands over to its head in _finish()
            if (
                self._running
                and self._task_queues[op.task_id][0] == seq
                and not self._has_outstanding(op.task_id)
            ):
                self._submit(op)
        logger.info("Requeued %r", op)
        return op

    def wait_for(self, seq: int, timeout: float | None = None) -> SyncOperation:
        """Block until an operation reaches a terminal state.

        Returns:
            The succeeded operation.

        Raises:
            AbandonedOperation: If the operation was abandoned.
            UnresolvableConflict: If the operation failed on a conflict.
            TimeoutError: If it did not settle in time.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._changed:
            while seq in self._ops:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError(f"Operation #{seq} still pending")
                self._changed.wait(timeout=remaining)

        op = self.get_operation(seq)
        if op.status is OperationStatus.ABANDONED:
            raise AbandonedOperation(op)
        if op.status is OperationStatus.FAILED:
            raise UnresolvableConflict(op.last_error or f"Operation #{seq} failed")
        return op
