"""Operation log commands for tasksync CLI.

Commands:
- ops list: List logged sync operations
- ops show: Show one operation
- ops dismiss: Acknowledge an abandoned or failed operation
- ops requeue: Reset an abandoned or failed operation to queued
"""

from __future__ import annotations

import json
import sys

import click

from tasksync.client.cli.common import format_row, format_time, get_config, open_log
from tasksync.client.sync.oplog import dismiss_operation, get_operation, requeue_operation
from tasksync.client.sync.types import OperationStatus
from tasksync.core.errors import TaskSyncError

STATUS_CHOICES = [s.value for s in OperationStatus]


@click.group()
def ops() -> None:
    """Inspect and manage the sync operation log."""


@ops.command("list")
@click.option(
    "--status",
    "-s",
    type=click.Choice(STATUS_CHOICES),
    default=None,
    help="Only operations in this status.",
)
@click.option("--all", "show_all", is_flag=True, help="Include dismissed operations.")
@click.pass_context
def list_cmd(ctx: click.Context, status: str | None, show_all: bool) -> None:
    """List logged sync operations."""
    config = get_config(ctx)
    log = open_log(config)
    try:
        operations = log.list([OperationStatus(status)] if status else None)
    finally:
        log.close()

    if not show_all:
        operations = [op for op in operations if not op.dismissed]
    if not operations:
        click.echo("No operations.")
        return
    for op in operations:
        click.echo(format_row(op))


@ops.command("show")
@click.argument("seq", type=int)
@click.option("--json", "as_json", is_flag=True, help="Print the raw record as JSON.")
@click.pass_context
def show_cmd(ctx: click.Context, seq: int, as_json: bool) -> None:
    """Show one operation with its status history."""
    config = get_config(ctx)
    log = open_log(config)
    try:
        op = get_operation(log, seq)
    except TaskSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        log.close()

    if as_json:
        click.echo(json.dumps(op.to_dict(), indent=2))
        return

    click.echo(format_row(op))
    click.echo(f"  op_id:        {op.op_id}")
    click.echo(f"  base_version: {op.base_version if op.base_version is not None else '-'}")
    click.echo(f"  created:      {format_time(op.created_at)}")
    click.echo(f"  next attempt: {format_time(op.next_attempt_at)}")
    if op.last_error:
        click.echo(f"  last error:   {op.error_kind}: {op.last_error}")
    click.echo(f"  history:      {' -> '.join(s.value for s in op.history)}")


@ops.command("dismiss")
@click.argument("seq", type=int)
@click.pass_context
def dismiss_cmd(ctx: click.Context, seq: int) -> None:
    """Acknowledge an abandoned or failed operation (the record is kept)."""
    config = get_config(ctx)
    log = open_log(config)
    try:
        op = dismiss_operation(log, seq)
    except TaskSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        log.close()
    click.echo(f"Dismissed operation #{op.seq}")


@ops.command("requeue")
@click.argument("seq", type=int)
@click.pass_context
def requeue_cmd(ctx: click.Context, seq: int) -> None:
    """Put an abandoned or failed operation back in the pipeline.

    It is delivered by the next `tasksync sync`.
    """
    config = get_config(ctx)
    log = open_log(config)
    try:
        op = requeue_operation(log, seq)
    except TaskSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        log.close()
    click.echo(f"Requeued operation #{op.seq}")
