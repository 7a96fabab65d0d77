"""Helpers shared by CLI commands."""

from __future__ import annotations

import sys
from datetime import UTC, datetime

import click

from tasksync.client.sync.oplog import SQLiteOperationLog
from tasksync.client.sync.types import SyncOperation
from tasksync.core.config import SyncConfig, load_config
from tasksync.core.errors import TaskSyncError


def get_config(ctx: click.Context) -> SyncConfig:
    """Load the effective configuration, exiting on errors."""
    try:
        return load_config((ctx.obj or {}).get("config_path"))
    except (TaskSyncError, ValueError) as e:
        click.echo(f"Error: invalid configuration: {e}", err=True)
        sys.exit(1)


def open_log(config: SyncConfig) -> SQLiteOperationLog:
    """Open the durable operation log."""
    return SQLiteOperationLog(config.db_path)


def format_time(timestamp: float | None) -> str:
    """Format a wall-clock timestamp for display."""
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp, UTC).strftime("%Y-%m-%d %H:%M:%S")


def format_row(op: SyncOperation) -> str:
    """One-line summary of an operation."""
    flags = []
    if op.superseded:
        flags.append("superseded")
    if op.dismissed:
        flags.append("dismissed")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"#{op.seq:<5} {op.kind.value:<7} {op.status.value:<16} "
        f"{op.task_id}  attempts={op.attempts}{suffix}"
    )
