"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from kubejobs_api import __version__
from kubejobs_api.core.config import get_settings
from kubejobs_api.core.telemetry import setup_telemetry
from kubejobs_api.routes import health_router, job_events_router, jobs_router
from kubejobs_api.services.job_events import get_job_event_watcher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    watcher = get_job_event_watcher()

    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")
    settings.ensure_data_dirs()
    logger.info(f"Data directory: {settings.data_dir}")

    await watcher.start()

    yield

    logger.info("Shutting down...")
    await watcher.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Translates platform jobs into Kubernetes CronJobs and audits their runs",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_telemetry(app, settings)

    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(job_events_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "kubejobs_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
