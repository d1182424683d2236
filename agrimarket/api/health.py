"""Liveness, readiness and health probes."""

from typing import Union

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from agrimarket.core.config import get_settings
from agrimarket.core.logging import get_logger
from agrimarket.database.connection import check_database_health

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    """Report that the process is up; never touches the database."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/live", summary="Liveness check endpoint")
async def liveness_check() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/ready", summary="Readiness check endpoint", response_model=None)
async def readiness_check() -> Union[dict[str, Union[str, bool]], JSONResponse]:
    """
    Report ready only while the database accepts queries.

    Orders, bookings and tickets all live in the database, so without it the
    service cannot take traffic.
    """
    settings = get_settings()
    database_ready = await check_database_health(max_retries=1)

    if not database_ready:
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "dependencies_ready": False,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "dependencies_ready": True,
        "database": "healthy",
    }
