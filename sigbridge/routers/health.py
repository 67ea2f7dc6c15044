"""
Health Check Router

Provides endpoints for monitoring application health.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from sigbridge import __version__
from sigbridge.config import get_settings
from sigbridge.core.database import DbSession

router = APIRouter(prefix="/health", tags=["health"])


class HealthCheck(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    version: str = __version__
    environment: str


class DetailedHealthCheck(BaseModel):
    """Detailed health check with component status."""
    status: str
    timestamp: datetime
    version: str = __version__
    environment: str
    components: dict[str, dict]


@router.get("", response_model=HealthCheck)
async def health_check() -> HealthCheck:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    settings = get_settings()
    return HealthCheck(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
    )


@router.get("/detailed", response_model=DetailedHealthCheck)
async def detailed_health_check(db: DbSession) -> DetailedHealthCheck:
    """
    Detailed health check with component status.

    Checks database connectivity and reports the rule API mode.
    """
    settings = get_settings()
    components: dict[str, dict] = {}
    database_type = settings.database_url.split(":", 1)[0].split("+", 1)[0]

    try:
        await db.execute(text("SELECT 1"))
        components["database"] = {
            "status": "healthy",
            "type": database_type,
        }
    except Exception as e:
        components["database"] = {
            "status": "unhealthy",
            "type": database_type,
            "error": str(e),
        }

    components["rule_api"] = {
        "status": "enabled" if settings.remote_rule_api_enabled else "script_only",
        "base_url": settings.graph_base_url,
    }

    unhealthy = any(c.get("status") == "unhealthy" for c in components.values())
    overall_status = "unhealthy" if unhealthy else "healthy"

    return DetailedHealthCheck(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        components=components,
    )
