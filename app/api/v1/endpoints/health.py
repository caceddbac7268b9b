"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.config import settings
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health plus the state of each dependency."""

    database: str
    redis: str
    payment_gateway: str
    webhook_signing: str


def gateway_status() -> str:
    """Whether checkout URLs can be built."""
    if settings.moneyfusion_api_url and settings.public_api_url:
        return "configured"
    return "not_configured"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Report database, Redis and payment gateway readiness.

    Redis carries the realtime feed and the access-code rate limit, so a Redis
    outage degrades the service. A missing gateway only disables paid checkouts
    and also reports degraded.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()
    gateway = gateway_status()

    healthy = db_healthy and redis_healthy and gateway == "configured"
    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        payment_gateway=gateway,
        webhook_signing="enabled" if settings.moneyfusion_webhook_secret else "disabled",
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    return {"message": "pong"}
