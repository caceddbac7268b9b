"""Payment initialization for appointment deposits."""

from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.moneyfusion import (
    build_payment_form,
    build_payment_url,
    build_return_url,
    gateway_urls,
)
from app.core.exceptions import ConflictException, NotFoundException, PersistenceException
from app.models.appointments import appointments
from app.models.base import utc_now
from app.models.payments import payments
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.schemas.appointments import AppointmentStatus
from app.schemas.payments import (
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentStatus,
    PaymentType,
)
from app.services.user_service import UserService

logger = structlog.get_logger(__name__)

APPOINTMENT_ARTICLE = "Acompte consultation KoKo Sante"


def new_payment_values(
    *,
    amount: int,
    patient_id: UUID,
    appointment_id: UUID | None = None,
    session_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Column values of a new pending payment.

    ``transaction_ref`` starts as the payment's own id and is replaced by the
    gateway token when the webhook arrives.
    """
    payment_id = uuid4()
    now = utc_now()
    return {
        "id": payment_id,
        "appointment_id": appointment_id,
        "session_id": session_id,
        "patient_id": patient_id,
        "amount": amount,
        "status": PaymentStatus.PENDING.value,
        "payment_type": PaymentType.DEPOSIT.value,
        "provider": "moneyfusion",
        "transaction_ref": str(payment_id),
        "paid_at": None,
        "failure_reason": None,
        "created_at": now,
        "updated_at": now,
    }


def build_checkout(
    *,
    payment_id: UUID,
    amount: int,
    article: str,
    customer_phone: str,
    customer_name: str,
    correlation: dict[str, Any],
) -> tuple[str, dict[str, str]]:
    """
    Build the gateway URL and form fields for a payment.

    Raises:
        ConfigurationException: If the gateway is not configured
    """
    gateway_url, webhook_url = gateway_urls()
    form = build_payment_form(
        amount=amount,
        article=article,
        customer_phone=customer_phone,
        customer_name=customer_name,
        correlation=correlation,
        return_url=build_return_url(payment_id),
        webhook_url=webhook_url,
    )
    return build_payment_url(gateway_url, form), form


class PaymentService:
    """Service for starting appointment payments."""

    def __init__(self, db: AsyncSession, feed: ChangeFeed | None = None):
        """Initialize service with database session and change feed."""
        self.db = db
        self.feed = feed

    async def _pending_payment_for(self, appointment_id: UUID) -> dict | None:
        result = await self.db.execute(
            select(payments).where(
                payments.c.appointment_id == appointment_id,
                payments.c.status == PaymentStatus.PENDING.value,
            )
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def initialize_payment(
        self,
        data: PaymentInitRequest,
        user: dict,
    ) -> PaymentInitResponse:
        """
        Create a pending payment for an appointment deposit.

        A second request while a payment is still pending returns that
        payment instead of creating another.

        Args:
            data: Validated request
            user: Authenticated user

        Returns:
            Payment id, checkout URL and form fields

        Raises:
            ConfigurationException: If the gateway is not configured
            NotFoundException: If the appointment does not exist for this patient
            ConflictException: If the appointment is no longer pending
            PersistenceException: If the payment could not be stored
        """
        # Fail before any write when the gateway is unusable
        gateway_urls()

        patient = await UserService.resolve_patient(self.db, user, data.patient_id)

        result = await self.db.execute(
            select(appointments).where(
                appointments.c.id == data.appointment_id,
                appointments.c.patient_id == patient["id"],
            )
        )
        appointment = result.mappings().first()
        if not appointment:
            raise NotFoundException("Appointment not found")
        if appointment["status"] != AppointmentStatus.PENDING.value:
            raise ConflictException("Appointment is not awaiting payment")

        payment = await self._pending_payment_for(data.appointment_id)
        created = payment is None

        if payment is None:
            values = new_payment_values(
                amount=data.amount,
                patient_id=patient["id"],
                appointment_id=data.appointment_id,
            )
            try:
                await self.db.execute(insert(payments).values(**values))
                await self.db.commit()
                payment = values
            except IntegrityError:
                # Lost a race with a concurrent submit
                await self.db.rollback()
                payment = await self._pending_payment_for(data.appointment_id)
                created = False
                if payment is None:
                    raise PersistenceException()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    "payment_insert_failed",
                    appointment_id=str(data.appointment_id),
                    error=str(e),
                )
                raise PersistenceException() from e

        if created:
            logger.info(
                "payment_created",
                payment_id=str(payment["id"]),
                appointment_id=str(data.appointment_id),
                amount=data.amount,
            )
            if self.feed is not None:
                await self.feed.publish([ChangeEvent.insert("payments", payment)])
        else:
            logger.info(
                "payment_reused",
                payment_id=str(payment["id"]),
                appointment_id=str(data.appointment_id),
                requested_amount=data.amount,
                stored_amount=payment["amount"],
            )

        payment_url, form = build_checkout(
            payment_id=payment["id"],
            amount=payment["amount"],
            article=APPOINTMENT_ARTICLE,
            customer_phone=data.customer_phone,
            customer_name=data.customer_name,
            correlation={
                "paymentId": payment["id"],
                "appointmentId": data.appointment_id,
                "patientId": patient["id"],
            },
        )

        return PaymentInitResponse(
            payment_id=payment["id"],
            payment_url=payment_url,
            form_data=form,
        )
