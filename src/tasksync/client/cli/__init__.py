"""Command-line interface for tasksync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- ops list: List logged sync operations
- ops show: Show one operation with its history
- ops dismiss: Acknowledge an abandoned or failed operation
- ops requeue: Put an abandoned or failed operation back in the pipeline
- sync: Deliver pending operations to the configured server
- server: Run the reference task server
"""

from __future__ import annotations

from pathlib import Path

import click

from tasksync import __version__
from tasksync.client.cli.ops import ops
from tasksync.client.cli.server import server
from tasksync.client.cli.sync import sync


@click.group()
@click.version_option(__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.tasksync/config.json).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """tasksync - offline-first task sync."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# Operation log commands
cli.add_command(ops)

# Sync commands
cli.add_command(sync)

# Server command
cli.add_command(server)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
]
