"""Tests for the task model."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tasksync.core.errors import ValidationError
from tasksync.core.models import (
    Priority,
    Task,
    TaskFilter,
    TaskStatus,
    parse_datetime,
    validate_fields,
)


class TestValidateFields:
    """Tests for validate_fields."""

    def test_full_payload(self) -> None:
        """Should parse enums and datetimes."""
        fields = validate_fields(
            {
                "title": "Buy milk",
                "priority": "high",
                "status": "in_progress",
                "due_date": "2025-03-01T10:00:00+00:00",
            }
        )
        assert fields["title"] == "Buy milk"
        assert fields["priority"] is Priority.HIGH
        assert fields["status"] is TaskStatus.IN_PROGRESS
        assert fields["due_date"] == datetime(2025, 3, 1, 10, 0, tzinfo=UTC)

    @pytest.mark.parametrize("title", ["", "   ", None, 42])
    def test_bad_title(self, title: object) -> None:
        """Empty or non-string titles are rejected."""
        with pytest.raises(ValidationError):
            validate_fields({"title": title})

    def test_title_required_on_create(self) -> None:
        """A full payload needs a title."""
        with pytest.raises(ValidationError):
            validate_fields({"description": "no title"})

    def test_partial_allows_missing_title(self) -> None:
        """A patch may omit the title."""
        assert validate_fields({"status": "completed"}, partial=True) == {"status": TaskStatus.COMPLETED}

    def test_unknown_field(self) -> None:
        """Unknown fields are rejected."""
        with pytest.raises(ValidationError, match="colour"):
            validate_fields({"title": "x", "colour": "red"})

    def test_bad_enum(self) -> None:
        """Enum values outside the closed set are rejected."""
        with pytest.raises(ValidationError, match="priority"):
            validate_fields({"title": "x", "priority": "urgent"})

    def test_naive_datetime_is_utc(self) -> None:
        """Naive timestamps are interpreted as UTC."""
        assert parse_datetime("2025-01-01T00:00:00", "x") == datetime(2025, 1, 1, tzinfo=UTC)

    def test_bad_datetime(self) -> None:
        """Garbage timestamps are rejected."""
        with pytest.raises(ValidationError):
            parse_datetime("tomorrow", "due_date")


class TestTask:
    """Tests for Task dataclass."""

    def test_dict_round_trip(self) -> None:
        """to_dict/from_dict should preserve every field."""
        task = Task(
            id="t1",
            title="Buy milk",
            description="2 liters",
            priority=Priority.LOW,
            status=TaskStatus.COMPLETED,
            due_date=datetime(2025, 5, 1, tzinfo=UTC),
            version=4,
            deleted=True,
        )
        assert Task.from_dict(task.to_dict()) == task

    def test_evolve_returns_copy(self) -> None:
        """evolve should not touch the original."""
        task = Task(id="t1", title="a")
        changed = task.evolve(title="b", version=2)
        assert task.title == "a"
        assert changed.title == "b"
        assert changed.version == 2

    def test_content_ignores_version(self) -> None:
        """Two versions with the same fields have the same content."""
        task = Task(id="t1", title="a")
        assert task.content() == task.evolve(version=9).content()
        assert task.content() != task.evolve(title="b").content()


class TestTaskFilter:
    """Tests for TaskFilter."""

    def test_default_hides_deleted(self) -> None:
        """Tombstones are hidden unless requested."""
        tombstone = Task(id="t1", title="a", deleted=True)
        assert TaskFilter().matches(tombstone) is False
        assert TaskFilter(include_deleted=True).matches(tombstone) is True

    def test_text_matches_title_and_description(self) -> None:
        """Free text is a case-insensitive substring search."""
        task = Task(id="t1", title="Buy Milk", description="at the Market")
        assert TaskFilter(text="milk").matches(task)
        assert TaskFilter(text="MARKET").matches(task)
        assert not TaskFilter(text="bread").matches(task)

    def test_status_and_priority(self) -> None:
        """Status and priority criteria combine."""
        task = Task(id="t1", title="a", priority=Priority.HIGH, status=TaskStatus.PENDING)
        assert TaskFilter(status=TaskStatus.PENDING, priority=Priority.HIGH).matches(task)
        assert not TaskFilter(status=TaskStatus.COMPLETED).matches(task)
        assert not TaskFilter(priority=Priority.LOW).matches(task)
