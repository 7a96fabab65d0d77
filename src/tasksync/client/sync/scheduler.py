"""Bounded worker pool executing queued work items.

This module provides:
- ConcurrencyScheduler: Fixed pool of worker threads draining a WorkQueue
- WorkHandle: Handle returned by submit(), carrying the completion signal
- WorkContext: Passed to each unit of work for cooperative cancellation
- PoolState: Lifecycle of the pool

At most `max_workers` units execute at the same time. Pending items can be
withdrawn through their handle; running items only see a cancellation flag,
which they poll at checkpoints (WorkContext.checkpoint()).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from tasksync.client.sync.queue import WorkItem, WorkQueue
from tasksync.core.config import DEFAULT_CONCURRENCY_LIMIT
from tasksync.core.errors import CancelledException

if TYPE_CHECKING:
    from collections.abc import Hashable
    from concurrent.futures import Future

logger = logging.getLogger(__name__)


class PoolState(Enum):
    """State of the worker pool."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


@dataclass
class WorkContext:
    """Context passed to a unit of work.

    Attributes:
        item: The work item being executed.
    """

    item: WorkItem

    def cancel_requested(self) -> bool:
        """Check if cancellation was requested."""
        return self.item.cancel_requested

    def checkpoint(self) -> None:
        """Raise CancelledException if cancellation was requested."""
        if self.item.cancel_requested:
            raise CancelledException(f"{self.item.name or 'work item'} cancelled")


class WorkHandle:
    """Handle on a submitted work item.

    The completion signal fires exactly once, with the unit's return value
    or the exception it raised.
    """

    def __init__(self, scheduler: ConcurrencyScheduler, item: WorkItem) -> None:
        self._scheduler = scheduler
        self._item = item

    @property
    def item(self) -> WorkItem:
        """The underlying work item."""
        return self._item

    @property
    def future(self) -> Future[Any]:
        """The completion future."""
        return self._item.future

    def result(self, timeout: float | None = None) -> Any:
        """Block until the unit completes and return its result (or raise its error)."""
        return self._item.future.result(timeout=timeout)

    def exception(self, timeout: float | None = None) -> BaseException | None:
        """Block until the unit completes and return its error, if any."""
        return self._item.future.exception(timeout=timeout)

    def done(self) -> bool:
        """Check if the unit completed, failed or was withdrawn."""
        return self._item.future.done()

    def cancelled(self) -> bool:
        """Check if the unit was withdrawn before it started."""
        return self._item.future.cancelled()

    def add_done_callback(self, callback: Callable[[WorkHandle], None]) -> None:
        """Register a continuation invoked once the unit completes."""
        self._item.future.add_done_callback(lambda _f: callback(self))

    def cancel(self) -> bool:
        """Withdraw the item, or flag it for cooperative cancellation.

        Returns:
            True if the item had not started and was withdrawn.
        """
        return self._scheduler.cancel(self)

    def __repr__(self) -> str:
        """Human-readable representation."""
        return f"WorkHandle({self._item!r}, done={self.done()})"


class ConcurrencyScheduler:
    """Fixed-size pool of workers over a priority work queue.

    Usage:
        scheduler = ConcurrencyScheduler(max_workers=4)
        scheduler.start()

        handle = scheduler.submit(job, priority=10, key="task-1")
        handle.add_done_callback(on_done)

        scheduler.drain()
        scheduler.stop()
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_CONCURRENCY_LIMIT,
        queue: WorkQueue | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        """Initialize the scheduler.

        Args:
            max_workers: Maximum number of concurrently executing units.
            queue: Work queue to drain (a new one by default).
            poll_interval: How often idle workers re-check the pool state.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self._max_workers = max_workers
        self._queue = queue or WorkQueue()
        self._poll_interval = poll_interval

        # Pool state
        self._pool_state = PoolState.STOPPED
        self._lock = threading.Condition()
        self._workers: list[threading.Thread] = []
        self._spawned = 0

        # Running items by seq (for cancellation on stop)
        self._running: dict[int, WorkItem] = {}

        # Submitted and not yet finished (queued + running)
        self._outstanding = 0

        # Statistics
        self._completed_count = 0
        self._error_count = 0
        self._max_observed = 0

    @property
    def state(self) -> PoolState:
        """Get current pool state."""
        return self._pool_state

    @property
    def max_workers(self) -> int:
        """Size of the worker pool."""
        return self._max_workers

    @property
    def active_count(self) -> int:
        """Get number of units currently executing."""
        with self._lock:
            return len(self._running)

    @property
    def queue_size(self) -> int:
        """Get number of queued items."""
        return len(self._queue)

    @property
    def completed_count(self) -> int:
        """Get number of units that returned normally."""
        return self._completed_count

    @property
    def error_count(self) -> int:
        """Get number of units that raised."""
        return self._error_count

    @property
    def max_observed_concurrency(self) -> int:
        """Highest number of units seen executing at once."""
        return self._max_observed

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._pool_state != PoolState.STOPPED:
                logger.warning("Scheduler already running")
                return

            self._pool_state = PoolState.RUNNING
            self._queue.open()

            # Workers left over from a timed-out stop() resume and count toward the pool
            adopted = len(self._workers)
            for _ in range(self._max_workers - adopted):
                self._spawned += 1
                thread = threading.Thread(
                    target=self._worker_loop,
                    name=f"Scheduler-{self._spawned}",
                    daemon=True,
                )
                thread.start()
                self._workers.append(thread)

            if adopted:
                logger.info(
                    "Scheduler started with %d workers (%d still busy from last run)",
                    self._max_workers,
                    adopted,
                )
            else:
                logger.info("Scheduler started with %d workers", self._max_workers)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the scheduler.

        Queued items are withdrawn (their futures are cancelled) and running
        items are asked to cancel at their next checkpoint.

        Args:
            timeout: Maximum time to wait for workers to finish.
        """
        with self._lock:
            if self._pool_state == PoolState.STOPPED:
                return

            self._pool_state = PoolState.STOPPING
            logger.info("Scheduler stopping...")

            for item in self._running.values():
                item.request_cancel()

        for item in self._queue.clear():
            self._withdraw(item)
        self._queue.close()

        with self._lock:
            workers = list(self._workers)
        deadline = time.monotonic() + timeout
        for worker in workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))

        with self._lock:
            self._pool_state = PoolState.STOPPED
            self._lock.notify_all()
            if self._workers:
                logger.warning(
                    "Scheduler stopped with %d worker(s) still busy", len(self._workers)
                )
            else:
                logger.info("Scheduler stopped")

    def __enter__(self) -> ConcurrencyScheduler:
        """Context manager entry: start the pool."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit: stop the pool."""
        self.stop()

    def submit(
        self,
        fn: Callable[[WorkContext], Any],
        priority: int = 0,
        key: Hashable | None = None,
        not_before: float | None = None,
        name: str = "",
    ) -> WorkHandle:
        """Queue a unit of work and return immediately.

        Items submitted before start() wait in the queue until the pool runs.

        Args:
            fn: Callable receiving a WorkContext.
            priority: Higher values run first.
            key: Entity key; items with the same key run one at a time, in order.
            not_before: Monotonic time before which the item must not start.
            name: Label used in logs.

        Returns:
            Handle carrying the completion signal.

        Raises:
            RuntimeError: If the scheduler is stopping.
        """
        with self._lock:
            if self._pool_state == PoolState.STOPPING:
                raise RuntimeError("Cannot submit work: scheduler is stopping")
            self._outstanding += 1

        item = WorkItem(fn=fn, priority=priority, key=key, not_before=not_before, name=name)
        try:
            self._queue.put(item)
        except RuntimeError:
            self._finish()
            raise
        logger.debug("Submitted %r", item)
        return WorkHandle(self, item)

    def cancel(self, handle: WorkHandle) -> bool:
        """Cancel a submitted item.

        Pending items are withdrawn from the queue. Running items get their
        cancellation flag set and stop at their next checkpoint.

        Returns:
            True if the item had not started and was withdrawn.
        """
        item = handle.item
        if self._queue.remove(item):
            self._withdraw(item)
            logger.info("Withdrew %r", item)
            return True

        if not item.future.done():
            item.request_cancel()
            logger.info("Cancellation requested for %r", item)
        return False

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until the queue is empty and no worker is busy.

        Args:
            timeout: Maximum seconds to wait (None = wait forever).

        Returns:
            True if drained, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            while self._outstanding > 0:
                if deadline is None:
                    self._lock.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._lock.wait(timeout=remaining)
            return True

    def _withdraw(self, item: WorkItem) -> None:
        """Cancel the future of an item that never started."""
        item.future.cancel()
        self._finish()

    def _finish(self) -> None:
        with self._lock:
            self._outstanding -= 1
            self._lock.notify_all()

    def _worker_loop(self) -> None:
        """Main loop for worker threads.

        A worker leaves the pool (under the lock) as soon as it sees the pool
        is not running, so `_workers` only ever lists threads that may still
        take work.
        """
        me = threading.current_thread()
        while True:
            with self._lock:
                if self._pool_state != PoolState.RUNNING:
                    self._workers.remove(me)
                    return
            try:
                item = self._queue.take(timeout=self._poll_interval)
                if item is None:
                    continue
                self._process(item)
            except Exception:
                logger.exception("Unexpected error in worker loop")

    def _process(self, item: WorkItem) -> None:
        """Execute one item and resolve its future."""
        try:
            if not item.future.set_running_or_notify_cancel():
                # Cancelled directly on the future while queued
                return

            with self._lock:
                self._running[item.seq] = item
                self._max_observed = max(self._max_observed, len(self._running))

            try:
                result = item.fn(WorkContext(item))
            except CancelledException as e:
                logger.info("%r cancelled", item)
                item.future.set_exception(e)
            except Exception as e:
                self._error_count += 1
                logger.debug("%r failed: %s", item, e)
                item.future.set_exception(e)
            else:
                self._completed_count += 1
                item.future.set_result(result)
        finally:
            with self._lock:
                self._running.pop(item.seq, None)
            self._queue.done(item)
            self._finish()
