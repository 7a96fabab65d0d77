"""Task model shared by the client store and the reference server.

This module provides:
- Priority, TaskStatus: Closed enums for task attributes
- Task: A task entity with a monotonically increasing version
- TaskFilter: Criteria for listing tasks
- validate_fields: Input validation for create/update payloads
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from tasksync.core.errors import ValidationError

# Fields a caller may set on create or patch on update
EDITABLE_FIELDS = frozenset({"title", "description", "priority", "status", "due_date"})


class Priority(str, Enum):
    """Priority of a task."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    """Progress status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_task_id() -> str:
    """Generate an opaque task identifier."""
    return uuid.uuid4().hex


def parse_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"{field_name} is not an ISO-8601 timestamp: {value!r}") from e
    else:
        raise ValidationError(f"{field_name} must be a datetime, got {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(str(m.value) for m in enum_cls)
        raise ValidationError(f"{field_name} must be one of: {allowed}") from e


def validate_fields(data: dict[str, Any], *, partial: bool = False) -> dict[str, Any]:
    """Validate and normalize editable task fields.

    Args:
        data: Raw field values (enum values may be given as strings).
        partial: True for a patch, where every field is optional.

    Returns:
        Normalized fields with enums and datetimes parsed.

    Raises:
        ValidationError: If a field is unknown, has the wrong type, or the
            title is empty.
    """
    unknown = set(data) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    cleaned: dict[str, Any] = {}

    if "title" in data or not partial:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title must be a non-empty string")
        cleaned["title"] = title

    if "description" in data:
        description = data["description"]
        if description is None:
            description = ""
        if not isinstance(description, str):
            raise ValidationError("description must be a string")
        cleaned["description"] = description

    if "priority" in data:
        cleaned["priority"] = _parse_enum(Priority, data["priority"], "priority")

    if "status" in data:
        cleaned["status"] = _parse_enum(TaskStatus, data["status"], "status")

    if "due_date" in data:
        cleaned["due_date"] = parse_datetime(data["due_date"], "due_date")

    return cleaned


@dataclass
class Task:
    """A task entity.

    Attributes:
        id: Opaque identifier, immutable once assigned.
        title: Non-empty title.
        description: Free-form description.
        priority: Task priority.
        status: Progress status.
        due_date: Optional deadline.
        version: Increases on every mutation, local or remote-applied.
        created_at: Creation timestamp (UTC).
        updated_at: Last modification timestamp (UTC).
        deleted: Tombstone flag set by delete.
    """

    id: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: datetime | None = None
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted: bool = False

    def content(self) -> tuple[Any, ...]:
        """User-visible fields, used to compare two versions of a task."""
        return (
            self.title,
            self.description,
            self.priority,
            self.status,
            self.due_date,
            self.deleted,
        )

    def evolve(self, **changes: Any) -> Task:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Create from a dictionary produced by to_dict() or the remote API."""
        created_at = parse_datetime(data.get("created_at"), "created_at") or utcnow()
        updated_at = parse_datetime(data.get("updated_at"), "updated_at") or created_at
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description") or "",
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            due_date=parse_datetime(data.get("due_date"), "due_date"),
            version=int(data.get("version", 1)),
            created_at=created_at,
            updated_at=updated_at,
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True)
class TaskFilter:
    """Criteria for TaskStore.list().

    Attributes:
        status: Only tasks with this status.
        priority: Only tasks with this priority.
        text: Case-insensitive substring matched against title and description.
        include_deleted: Also return tombstoned tasks.
    """

    status: TaskStatus | None = None
    priority: Priority | None = None
    text: str | None = None
    include_deleted: bool = False

    def matches(self, task: Task) -> bool:
        """Check whether a task satisfies every criterion."""
        if task.deleted and not self.include_deleted:
            return False
        if self.status is not None and task.status != self.status:
            return False
        if self.priority is not None and task.priority != self.priority:
            return False
        if self.text:
            needle = self.text.lower()
            if needle not in task.title.lower() and needle not in task.description.lower():
                return False
        return True
