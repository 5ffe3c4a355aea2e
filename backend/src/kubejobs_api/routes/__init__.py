"""API route modules."""

from kubejobs_api.routes.health import router as health_router
from kubejobs_api.routes.job_events import router as job_events_router
from kubejobs_api.routes.jobs import router as jobs_router

__all__ = [
    "health_router",
    "job_events_router",
    "jobs_router",
]
