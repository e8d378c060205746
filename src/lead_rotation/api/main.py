"""FastAPI application factory for the rotation API."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from fastapi import FastAPI

from .. import __version__
from ..core.config import RotationConfigManager, settings
from ..service import RotationService
from ..storage.database import RotationDatabase
from .routes.health import router as health_router
from .routes.rotation import router as rotation_router
from .routes.leads import router as leads_router
from .routes.entries import router as entries_router

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Lead Rotation API")
    if getattr(app.state, "service", None) is None:
        # Opening the database applies pending migrations
        db = RotationDatabase(Path(settings.db_path))
        config = RotationConfigManager(Path(settings.config_path)).config
        app.state.service = RotationService(db, config=config)
        logger.info(f"Using database {db.db_path}")

    yield

    pending = len(app.state.service.pending_hits)
    if pending:
        logger.warning(f"Shutting down with {pending} queued hit event(s)")
    logger.info("Lead Rotation API shutting down")


def create_app(service: Optional[RotationService] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Lead Rotation API",
        description="Round-robin lead assignment with hit accounting",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    # Routes
    app.include_router(health_router)
    app.include_router(rotation_router)
    app.include_router(leads_router)
    app.include_router(entries_router)

    return app


# Module-level app instance for uvicorn
app = create_app()
