"""Health check API route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tasksync.server.api.deps import get_repository
from tasksync.server.repository import TaskRepository
from tasksync.server.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(repository: TaskRepository = Depends(get_repository)) -> HealthResponse:
    """Check server health."""
    return HealthResponse(status="ok", tasks=len(repository))
