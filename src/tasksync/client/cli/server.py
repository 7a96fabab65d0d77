"""Server command for tasksync CLI.

Commands:
- server: Run the reference task server with uvicorn
"""

from __future__ import annotations

import os

import click


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", "-p", type=int, default=8000, show_default=True, help="Bind port.")
@click.option(
    "--token",
    envvar="TASKSYNC_SERVER_TOKEN",
    default=None,
    help="Bearer token required from clients (default: TASKSYNC_SERVER_TOKEN, unset = open).",
)
@click.option(
    "--log-path",
    type=click.Path(dir_okay=False),
    envvar="TASKSYNC_LOG_PATH",
    default=None,
    help="Also write logs to this file.",
)
def server(host: str, port: int, token: str | None, log_path: str | None) -> None:
    """Run the reference task server.

    The server keeps tasks in memory; it is meant for development and tests.

    Examples:

        # Open server on localhost
        tasksync server

        # Require a token
        tasksync server --token s3cret --port 9000
    """
    import uvicorn

    if token:
        os.environ["TASKSYNC_SERVER_TOKEN"] = token
    if log_path:
        os.environ["TASKSYNC_LOG_PATH"] = log_path

    click.echo(f"Starting tasksync server on http://{host}:{port}")
    uvicorn.run("tasksync.server.app:app_factory", factory=True, host=host, port=port)
