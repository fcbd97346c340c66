"""
Review Engine - FastAPI Application

Serves the review status workflow:
- Role-gated status transitions with history and SLA deadlines
- Best-effort mirroring of statuses into the external project system
- Reconciliation of external project statuses (on demand or scheduled)

The application is the only place where collaborators are wired; the
service container lives on app.state.services.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import SERVICE_DESCRIPTION, SERVICE_NAME, __version__
from .config import Settings
from .router import router
from .services import ReviewServices, build_services

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("review_engine")


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ReviewServices] = None,
) -> FastAPI:
    """Create the FastAPI application."""
    if services is None:
        services = build_services(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        scheduler = services.scheduler
        if scheduler is not None:
            task = asyncio.create_task(scheduler.start())
        logger.info(f"{SERVICE_NAME} v{__version__} started")
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info(f"{SERVICE_NAME} stopped")

    app = FastAPI(
        title=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "status": "running",
        }

    @app.get("/health")
    async def health():
        scheduler = app.state.services.scheduler
        return {
            "status": "healthy",
            "version": __version__,
            "scheduler_running": bool(scheduler and scheduler.is_running),
        }

    return app


def run():
    """Entry point for the review-engine console script."""
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
