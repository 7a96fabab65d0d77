"""Work queue for the concurrency scheduler.

This module provides:
- WorkItem: A unit of work with priority, entity key and readiness gate
- WorkQueue: Thread-safe priority queue with not-ready-before gating and
  per-key serialization

Ordering rules applied by take():
- Highest priority first, FIFO (enqueue order) within a priority
- Items whose not_before lies in the future are skipped until due
- Items sharing a key run one at a time, in enqueue order: only the oldest
  item of a key is eligible, and only while no item of that key is running
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterator

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class WorkItem:
    """A queued unit of work.

    Attributes:
        fn: Callable executed by a worker; receives a WorkContext.
        priority: Higher values run first.
        key: Optional entity key; items with the same key never overlap.
        not_before: Monotonic time before which the item must not start.
        name: Label used in logs.
        seq: Enqueue order, assigned by the queue.
        future: Completion signal carrying the result or the error.
        cancel_event: Cooperative cancellation flag for in-flight work.
    """

    fn: Callable[..., Any]
    priority: int = 0
    key: Hashable | None = None
    not_before: float | None = None
    name: str = ""
    seq: int = -1
    future: Future[Any] = field(default_factory=Future)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def request_cancel(self) -> None:
        """Request cancellation of this item."""
        self.cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        """Check if cancellation was requested."""
        return self.cancel_event.is_set()

    def is_ready(self, now: float) -> bool:
        """Check the not-ready-before gate."""
        return self.not_before is None or self.not_before <= now

    def __repr__(self) -> str:
        """Human-readable representation."""
        return f"WorkItem(#{self.seq}, {self.name or self.fn!r}, priority={self.priority}, key={self.key!r})"


class WorkQueue:
    """Thread-safe priority queue with readiness gates and key serialization.

    Usage:
        queue = WorkQueue()
        queue.put(WorkItem(fn=job, priority=10, key="task-1"))
        item = queue.take(timeout=1.0)
        try:
            item.fn(ctx)
        finally:
            queue.done(item)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the queue.

        Args:
            clock: Monotonic time source used for not_before gates.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._not_empty = threading.Condition(self._lock)
        self._items: list[WorkItem] = []
        self._busy_keys: set[Hashable] = set()
        self._next_seq = 0
        self._closed = False

    def put(self, item: WorkItem) -> WorkItem:
        """Add an item to the queue.

        Args:
            item: The item to add; its seq is assigned here.

        Returns:
            The same item.

        Raises:
            RuntimeError: If the queue is closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Queue is closed")
            item.seq = self._next_seq
            self._next_seq += 1
            self._items.append(item)
            self._not_empty.notify()
            logger.debug("Queued %r (queue size: %d)", item, len(self._items))
            return item

    def _select(self, now: float) -> tuple[WorkItem | None, float | None]:
        """Pick the next runnable item (lock held).

        Returns:
            (item, None) if an item is runnable, otherwise (None, wake_at)
            where wake_at is the earliest not_before among blocked items.
        """
        heads: dict[Hashable, WorkItem] = {}
        for item in self._items:
            if item.key is None:
                continue
            head = heads.get(item.key)
            if head is None or item.seq < head.seq:
                heads[item.key] = item

        best: WorkItem | None = None
        wake_at: float | None = None
        for item in self._items:
            if item.key is not None:
                if item.key in self._busy_keys or heads[item.key] is not item:
                    continue
            if item.not_before is not None and item.not_before > now:
                if wake_at is None or item.not_before < wake_at:
                    wake_at = item.not_before
                continue
            if best is None or (-item.priority, item.seq) < (-best.priority, best.seq):
                best = item

        if best is not None:
            return best, None
        return None, wake_at

    def take(self, timeout: float | None = None) -> WorkItem | None:
        """Take the next runnable item, blocking until one is available.

        The item's key (if any) stays reserved until done() is called.

        Args:
            timeout: Maximum seconds to wait (None = wait forever).

        Returns:
            The next item, or None on timeout or when the queue is closed.
        """
        with self._not_empty:
            deadline = None if timeout is None else self._clock() + timeout

            while not self._closed:
                now = self._clock()
                item, wake_at = self._select(now)
                if item is not None:
                    self._items.remove(item)
                    if item.key is not None:
                        self._busy_keys.add(item.key)
                    logger.debug("Dequeued %r (queue size: %d)", item, len(self._items))
                    return item

                wait: float | None = None
                if wake_at is not None:
                    wait = max(wake_at - now, 0.0)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._not_empty.wait(timeout=wait)

            return None

    def done(self, item: WorkItem) -> None:
        """Release the key reserved by take()."""
        with self._lock:
            if item.key is not None:
                self._busy_keys.discard(item.key)
            self._not_empty.notify_all()

    def remove(self, item: WorkItem) -> bool:
        """Withdraw a pending item.

        Returns:
            True if the item was still queued and has been removed.
        """
        with self._lock:
            try:
                self._items.remove(item)
            except ValueError:
                return False
            self._not_empty.notify_all()
            logger.debug("Removed %r from queue", item)
            return True

    def clear(self) -> list[WorkItem]:
        """Remove all pending items.

        Returns:
            The removed items, in enqueue order.
        """
        with self._lock:
            removed = sorted(self._items, key=lambda i: i.seq)
            self._items.clear()
            self._not_empty.notify_all()
            return removed

    def wake(self) -> None:
        """Wake up waiting takers (e.g. after an external state change)."""
        with self._lock:
            self._not_empty.notify_all()

    def open(self) -> None:
        """Re-open a closed queue."""
        with self._lock:
            self._closed = False

    def close(self) -> None:
        """Close the queue and wake up waiting threads."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            logger.debug("Work queue closed")

    @property
    def is_closed(self) -> bool:
        """Check if queue is closed."""
        return self._closed

    def __len__(self) -> int:
        """Get number of pending items."""
        with self._lock:
            return len(self._items)

    def __bool__(self) -> bool:
        """Check if queue has items."""
        with self._lock:
            return bool(self._items)

    def __iter__(self) -> Iterator[WorkItem]:
        """Iterate over pending items in priority order (does not remove them)."""
        with self._lock:
            return iter(sorted(self._items, key=lambda i: (-i.priority, i.seq)))
