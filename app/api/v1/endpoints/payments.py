"""Payment endpoints: checkout, gateway webhook and return-page verification."""

import json

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.exceptions import AppException
from app.dependencies import (
    CurrentUser,
    DatabaseSession,
    Feed,
    MoneyFusion,
    WebhookBody,
)
from app.schemas.payments import (
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    WebhookAck,
    WebhookPayload,
)
from app.services.payment_reconciler import PaymentReconciler
from app.services.payment_service import PaymentService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _webhook_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post(
    "/initialize",
    response_model=PaymentInitResponse,
    status_code=status.HTTP_200_OK,
    tags=["Payments"],
    summary="Start an appointment deposit payment",
)
async def initialize_payment(
    data: PaymentInitRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
) -> PaymentInitResponse:
    """
    Create a pending payment and return the MoneyFusion checkout URL.

    Args:
        data: Amount, appointment, patient and customer details
        current_user: Authenticated user
        db: Database session
        feed: Change feed

    Returns:
        Payment id, checkout URL and form fields
    """
    service = PaymentService(db, feed)
    return await service.initialize_payment(data, current_user)


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    tags=["Payments"],
    summary="MoneyFusion payment notification",
)
async def payment_webhook(
    body: WebhookBody,
    db: DatabaseSession,
    feed: Feed,
) -> WebhookAck | JSONResponse:
    """
    Apply a gateway notification to its payment.

    Redeliveries are acknowledged without changing anything. A 5xx answer
    asks the gateway to retry.
    """
    try:
        raw = json.loads(body)
    except ValueError:
        logger.warning("webhook_body_not_json")
        return _webhook_error(status.HTTP_400_BAD_REQUEST, "Invalid JSON body")

    if not isinstance(raw, dict):
        return _webhook_error(status.HTTP_400_BAD_REQUEST, "Invalid JSON body")

    try:
        payload = WebhookPayload.model_validate(raw)
    except ValidationError as e:
        logger.warning("webhook_body_invalid", error=str(e))
        return _webhook_error(status.HTTP_400_BAD_REQUEST, "Invalid webhook payload")

    try:
        result = await PaymentReconciler(db, feed).process(payload)
    except AppException as exc:
        return _webhook_error(exc.status_code, exc.message)

    return WebhookAck(applied=result.applied)


@router.post(
    "/verify",
    response_model=PaymentVerifyResponse,
    status_code=status.HTTP_200_OK,
    tags=["Payments"],
    summary="Check a payment from the return page",
)
async def verify_payment(
    data: PaymentVerifyRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
    gateway: MoneyFusion,
) -> PaymentVerifyResponse:
    """
    Current state of a payment.

    When the payment is still pending and a gateway token is known, the
    gateway is asked directly and its answer applied like a webhook.
    """
    reconciler = PaymentReconciler(db, feed)
    return await reconciler.verify(
        current_user,
        payment_id=data.payment_id,
        token=data.token.strip() if data.token else None,
        gateway=gateway,
    )
