"""User-facing sync notifications.

This module provides:
- NotificationType: What happened to an operation
- SyncNotification: Event pushed when the pipeline needs the user's attention
- NotificationHub: In-process publish/subscribe channel

The SyncManager publishes here when an operation is abandoned, fails on an
unresolvable conflict, or is superseded by a newer remote write. Rendering
(toast, tray, terminal) is left to subscribers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tasksync.client.sync.types import SyncOperation

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    """Type of notification."""

    ABANDONED = auto()
    UNRESOLVABLE = auto()
    SUPERSEDED = auto()


@dataclass(frozen=True)
class SyncNotification:
    """Represents a notification about a sync operation.

    Attributes:
        type: What happened.
        operation: Snapshot of the operation at that point.
        message: Human-readable summary.
    """

    type: NotificationType
    operation: SyncOperation
    message: str

    @property
    def title(self) -> str:
        """Short title for display."""
        titles = {
            NotificationType.ABANDONED: "tasksync - Sync failed",
            NotificationType.UNRESOLVABLE: "tasksync - Conflict needs attention",
            NotificationType.SUPERSEDED: "tasksync - Change overwritten",
        }
        return titles[self.type]


NotificationListener = Callable[[SyncNotification], None]


class NotificationHub:
    """Fan-out of SyncNotifications to subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register a listener.

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

    def publish(self, notification: SyncNotification) -> None:
        """Deliver a notification to every listener.

        Listener failures are logged and never reach the publisher.
        """
        level = logging.INFO if notification.type is NotificationType.SUPERSEDED else logging.WARNING
        logger.log(level, "%s: %s", notification.title, notification.message)

        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
