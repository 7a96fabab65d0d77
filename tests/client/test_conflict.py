"""Tests for last-writer-wins conflict resolution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tasksync.client.api import RemoteTask
from tasksync.client.sync.conflict import (
    ConflictOutcome,
    ConflictResolver,
    LocalVersion,
)
from tasksync.client.sync.types import OperationKind, SyncOperation
from tasksync.core.models import Task

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def make_local(
    op_id: str = "op-b",
    kind: OperationKind = OperationKind.UPDATE,
    base_version: int | None = 2,
    updated_at: datetime = T0,
) -> LocalVersion:
    return LocalVersion(
        op_id=op_id,
        kind=kind,
        version=3,
        base_version=base_version,
        updated_at=updated_at,
        payload={"title": "Buy oat milk"},
    )


def make_remote(
    version: int = 3,
    updated_at: datetime = T0,
    last_op_id: str | None = "op-a",
    deleted: bool = False,
) -> RemoteTask:
    task = Task(id="t1", title="Buy almond milk", version=version, updated_at=updated_at, deleted=deleted)
    return RemoteTask(task, last_op_id)


@pytest.fixture
def resolver() -> ConflictResolver:
    return ConflictResolver()


class TestAccept:
    """Cases where the server response is simply installed."""

    def test_own_operation(self, resolver: ConflictResolver) -> None:
        """A response produced by our op id is accepted even on 409."""
        resolution = resolver.resolve(make_local(op_id="op-a"), make_remote(last_op_id="op-a"), conflict=True)
        assert resolution.outcome is ConflictOutcome.ACCEPT_REMOTE
        assert resolution.task is not None
        assert resolution.superseded is False

    def test_clean_apply(self, resolver: ConflictResolver) -> None:
        """A 200 at base_version + 1 is a clean apply."""
        resolution = resolver.resolve(make_local(base_version=2), make_remote(version=3, last_op_id=None))
        assert resolution.outcome is ConflictOutcome.ACCEPT_REMOTE

    def test_create_expects_version_one(self) -> None:
        """A create lands at version 1."""
        assert make_local(kind=OperationKind.CREATE, base_version=None).expected_version == 1
        assert make_local(base_version=4).expected_version == 5

    def test_delete_of_deleted_task(self, resolver: ConflictResolver) -> None:
        """Deleting a task someone else deleted is fine."""
        resolution = resolver.resolve(
            make_local(kind=OperationKind.DELETE), make_remote(deleted=True), conflict=True
        )
        assert resolution.outcome is ConflictOutcome.ACCEPT_REMOTE


class TestLastWriterWins:
    """Cases decided by timestamps."""

    def test_later_remote_supersedes(self, resolver: ConflictResolver) -> None:
        """A later remote write wins wholesale."""
        resolution = resolver.resolve(
            make_local(updated_at=T0), make_remote(updated_at=T0 + timedelta(seconds=5)), conflict=True
        )
        assert resolution.outcome is ConflictOutcome.KEEP_REMOTE
        assert resolution.superseded is True
        assert resolution.task is not None
        assert resolution.task.title == "Buy almond milk"

    def test_later_local_wins(self, resolver: ConflictResolver) -> None:
        """A later local write is re-issued."""
        resolution = resolver.resolve(
            make_local(updated_at=T0 + timedelta(seconds=5)), make_remote(updated_at=T0), conflict=True
        )
        assert resolution.outcome is ConflictOutcome.KEEP_LOCAL
        assert resolution.task is None

    def test_tie_broken_by_op_id(self, resolver: ConflictResolver) -> None:
        """Equal timestamps: the greater op id wins."""
        local_greater = resolver.resolve(make_local(op_id="op-b"), make_remote(last_op_id="op-a"), conflict=True)
        remote_greater = resolver.resolve(make_local(op_id="op-a"), make_remote(last_op_id="op-c"), conflict=True)
        assert local_greater.outcome is ConflictOutcome.KEEP_LOCAL
        assert remote_greater.outcome is ConflictOutcome.KEEP_REMOTE

    def test_tie_without_remote_op_id(self, resolver: ConflictResolver) -> None:
        """A tied remote write without an op id loses."""
        resolution = resolver.resolve(make_local(), make_remote(last_op_id=None), conflict=True)
        assert resolution.outcome is ConflictOutcome.KEEP_LOCAL

    def test_unexpected_version_on_success(self, resolver: ConflictResolver) -> None:
        """A 200 at an unexpected version still goes through LWW."""
        resolution = resolver.resolve(
            make_local(base_version=2), make_remote(version=7, updated_at=T0 + timedelta(hours=1))
        )
        assert resolution.outcome is ConflictOutcome.KEEP_REMOTE


class TestUnresolvable:
    """Remote deletes against local edits."""

    def test_deleted_remotely_while_edited(self, resolver: ConflictResolver) -> None:
        """An update against a remote tombstone cannot be merged."""
        resolution = resolver.resolve(make_local(), make_remote(deleted=True), conflict=True)
        assert resolution.outcome is ConflictOutcome.UNRESOLVABLE
        assert "deleted remotely" in resolution.reason


class TestPurity:
    """resolve() depends only on its inputs."""

    def test_deterministic(self, resolver: ConflictResolver) -> None:
        """Identical inputs give identical resolutions, across instances."""
        local = make_local(updated_at=T0 + timedelta(seconds=1))
        remote = make_remote()
        first = resolver.resolve(local, remote, conflict=True)
        assert all(ConflictResolver().resolve(local, remote, conflict=True) == first for _ in range(20))


class TestLocalVersion:
    """Tests for LocalVersion.from_operation."""

    def test_from_operation(self) -> None:
        """Fields are taken from the operation and its payload."""
        op = SyncOperation(
            kind=OperationKind.UPDATE,
            task_id="t1",
            payload={"version": 4, "updated_at": T0.isoformat(), "title": "x"},
            base_version=3,
        )
        local = LocalVersion.from_operation(op)
        assert local.op_id == op.op_id
        assert local.version == 4
        assert local.base_version == 3
        assert local.updated_at == T0

    def test_falls_back_to_created_at(self) -> None:
        """Without updated_at in the payload the creation time is used."""
        op = SyncOperation(kind=OperationKind.UPDATE, task_id="t1", payload={}, created_at=T0.timestamp())
        assert LocalVersion.from_operation(op).updated_at == T0
