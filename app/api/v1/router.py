"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    health,
    notifications,
    payments,
    realtime,
    teleconsultations,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(
    teleconsultations.router,
    prefix="/teleconsultations",
    tags=["Teleconsultations"],
)
api_router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
api_router.include_router(realtime.router, prefix="/realtime", tags=["Realtime"])
