"""Health check endpoints for Kubernetes probes and monitoring."""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from kubejobs_api import __version__
from kubejobs_api.core.config import Settings, get_settings
from kubejobs_api.services.job_events import JobEventWatcher, get_job_event_watcher

SettingsDep = Annotated[Settings, Depends(get_settings)]
WatcherDep = Annotated[JobEventWatcher, Depends(get_job_event_watcher)]

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Basic health check for liveness probe."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=__version__,
        environment=settings.environment,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(settings: SettingsDep, watcher: WatcherDep) -> ReadinessResponse:
    """Readiness check for Kubernetes readiness probe.

    The event watcher is reported but does not gate readiness: audit events
    are best effort and job lifecycle calls work without it.
    """
    metadata_dir = settings.data_dir / "metadata"
    checks: dict[str, Any] = {
        "metadata_directory": {
            "status": "ok" if metadata_dir.exists() else "error",
            "path": str(metadata_dir),
        },
        "job_event_watcher": {
            "running": watcher.is_running,
            "enabled": settings.job_events_enabled,
        },
    }

    all_ok = all(
        check.get("status", "ok") == "ok" for check in checks.values() if isinstance(check, dict)
    )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.utcnow(),
        checks=checks,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check for Kubernetes startup probe."""
    return {"status": "started"}
