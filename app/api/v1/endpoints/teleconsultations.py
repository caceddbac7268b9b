"""Teleconsultation endpoints."""

from fastapi import APIRouter, Request, status

from app.dependencies import CurrentUser, DatabaseSession, Feed, Limiter, client_key
from app.schemas.teleconsultations import (
    AccessCodeVerifyRequest,
    AccessCodeVerifyResponse,
    TeleconsultationInitRequest,
    TeleconsultationInitResponse,
)
from app.services.access_code_service import AccessCodeService
from app.services.teleconsultation_service import TeleconsultationService

router = APIRouter()


@router.post(
    "/initialize",
    response_model=TeleconsultationInitResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    tags=["Teleconsultations"],
    summary="Open a teleconsultation session",
)
async def initialize_teleconsultation(
    data: TeleconsultationInitRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
) -> TeleconsultationInitResponse:
    """
    Open a session with a doctor.

    Free sessions answer with the access code; paid ones with a checkout URL.
    """
    service = TeleconsultationService(db, feed)
    return await service.initialize_session(data, current_user)


@router.post(
    "/verify-code",
    response_model=AccessCodeVerifyResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    tags=["Teleconsultations"],
    summary="Join a session with its access code",
)
async def verify_access_code(
    data: AccessCodeVerifyRequest,
    request: Request,
    db: DatabaseSession,
    feed: Feed,
    rate_limiter: Limiter,
) -> AccessCodeVerifyResponse:
    """
    Verify an access code; the first valid use starts the session.

    Rate limited per client.
    """
    service = AccessCodeService(db, feed, rate_limiter)
    return await service.verify(data.code, client_key(request))
