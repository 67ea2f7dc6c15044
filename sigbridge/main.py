"""
SigBridge API - FastAPI Application

Main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from sigbridge import __version__
from sigbridge.config import get_settings
from sigbridge.core.database import close_db, init_db
from sigbridge.routers import exchange_router, health_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Suppress noisy third-party loggers
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting SigBridge API...")
    settings = get_settings()

    logger.info("Initializing database connection...")
    # Production schemas come from migrations; local runs create tables directly
    await init_db(create_tables=not settings.is_production)
    logger.info("Database connection established")

    if not settings.remote_rule_api_enabled:
        logger.info("Remote rule API disabled: deployments will generate PowerShell scripts")

    logger.info(f"SigBridge API started in {settings.environment} mode")

    yield

    # Shutdown
    logger.info("Shutting down SigBridge API...")
    await close_db()
    logger.info("SigBridge API shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="SigBridge API",
        description="Email signature transport rule deployment for Exchange Online tenants",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(exchange_router)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "name": "SigBridge API",
            "version": __version__,
            "docs": "/docs" if settings.is_development else "disabled",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sigbridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
