"""Health check endpoints."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text

from saaskit_api.db.session import engine

router = APIRouter()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


def check_database() -> str:
    """Check database connectivity.

    Returns:
        str: "up" if healthy, error message otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        logger.error("health.database.down", extra={"error_type": type(e).__name__, "error": str(e)})
        return f"down: {str(e)[:50]}"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness: always 200, reports dependency status."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        services={"api": "up", "database": check_database()},
    )


@router.get("/readyz", response_model=HealthResponse)
async def readiness_check(response: Response) -> HealthResponse:
    """Readiness: 503 while the database is unreachable."""
    services = {"api": "up", "database": check_database()}

    if any(svc_status.startswith("down") for svc_status in services.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", version=VERSION, services=services)

    return HealthResponse(status="ready", version=VERSION, services=services)
