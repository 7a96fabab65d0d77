"""Sync command for tasksync CLI.

Commands:
- sync: Deliver pending operations to the configured server
"""

from __future__ import annotations

import logging
import sys

import click

from tasksync.client.cli.common import get_config
from tasksync.core.logging_setup import setup_logging


@click.command()
@click.option(
    "--timeout",
    "-t",
    type=float,
    default=300.0,
    show_default=True,
    help="Give up waiting after this many seconds.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def sync(ctx: click.Context, timeout: float, verbose: bool) -> None:
    """Deliver pending operations to the server.

    Recovers every queued, in-flight or retry-scheduled operation from the
    log and drains them, including retries.
    """
    from tasksync.client.api import RemoteClient
    from tasksync.client.store import TaskStore
    from tasksync.client.sync import SyncManager
    from tasksync.client.sync.types import OperationStatus

    config = get_config(ctx)
    setup_logging(config.log_path, logging.DEBUG if verbose else logging.INFO)

    if config.remote is None:
        click.echo(
            "Error: No server configured. Set remote.serverUrl in the config "
            "file or TASKSYNC_SERVER_URL.",
            err=True,
        )
        sys.exit(1)

    client = RemoteClient(config.client_remote())
    if not client.health_check():
        click.echo(f"Error: Server not reachable: {config.remote.server_url}", err=True)
        client.close()
        sys.exit(1)

    manager = SyncManager.from_config(TaskStore(), config, remote=client)
    try:
        pending = len(manager.pending())
        click.echo(f"Syncing {pending} pending operation(s) with {config.remote.server_url}")
        manager.start()
        drained = manager.drain(timeout=timeout)
    finally:
        manager.close()
        client.close()

    stats = manager.stats
    click.echo(
        f"Done: {stats.succeeded} succeeded ({stats.superseded} superseded), "
        f"{stats.retries} retries, {stats.abandoned} abandoned, "
        f"{stats.unresolvable} unresolvable"
    )
    if not drained:
        click.echo("Warning: timed out; remaining operations stay queued.", err=True)
        sys.exit(2)
    if stats.abandoned or stats.unresolvable:
        click.echo(
            f"Run 'tasksync ops list --status {OperationStatus.ABANDONED.value}' "
            f"or '--status {OperationStatus.FAILED.value}' for details.",
            err=True,
        )
        sys.exit(1)
