"""FastAPI application for the reference task server.

This module creates and configures the FastAPI application with the task
endpoint contract used by tasksync clients:
- POST /tasks, PUT /tasks/{id}, DELETE /tasks/{id} with optimistic versions
- GET /tasks, GET /tasks/{id}, GET /health

Usage:
    uvicorn tasksync.server.app:app_factory --factory --host 0.0.0.0 --port 8000

Environment:
    TASKSYNC_SERVER_TOKEN: Bearer token required from clients (unset = open)
    TASKSYNC_LOG_PATH: Optional log file
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from tasksync import __version__
from tasksync.core.logging_setup import setup_logging
from tasksync.server.api.router import router as api_router
from tasksync.server.repository import TaskRepository

logger = logging.getLogger(__name__)


def create_app(repository: TaskRepository | None = None, token: str | None = None) -> FastAPI:
    """Create FastAPI application.

    Args:
        repository: Task storage (a fresh in-memory repository by default).
        token: Bearer token clients must present; None disables auth.

    Returns:
        Configured FastAPI application.
    """
    repo = repository if repository is not None else TaskRepository()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info("=" * 60)
        logger.info("tasksync server starting")
        logger.info("=" * 60)
        logger.info("  Tasks: %d", len(repo))
        logger.info("  Auth:  %s", "bearer token" if token else "disabled")
        logger.info("=" * 60)

        yield

        logger.info("tasksync server shutting down")

    application = FastAPI(
        title="tasksync server",
        description="Reference implementation of the tasksync remote endpoint",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.repository = repo
    application.state.token = token

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode, configured from the environment."""
    log_path = os.environ.get("TASKSYNC_LOG_PATH")
    setup_logging(Path(log_path) if log_path else None)
    return create_app(token=os.environ.get("TASKSYNC_SERVER_TOKEN") or None)
