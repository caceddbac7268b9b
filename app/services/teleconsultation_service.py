"""Teleconsultation session creation."""

import secrets
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.moneyfusion import gateway_urls
from app.core.exceptions import BadRequestException, NotFoundException, PersistenceException
from app.models.base import utc_now
from app.models.payments import payments
from app.models.teleconsultation_sessions import teleconsultation_sessions
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.schemas.notifications import NotificationType, TeleconsultationNotificationData
from app.schemas.teleconsultations import (
    LIVE_SESSION_STATUSES,
    SessionStatus,
    TeleconsultationInitRequest,
    TeleconsultationInitResponse,
)
from app.services.notification_service import NotificationService, build_notification
from app.services.payment_service import build_checkout, new_payment_values
from app.services.user_service import UserService

logger = structlog.get_logger(__name__)

# No 0/O or 1/I: codes are read aloud and typed by hand
ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ACCESS_CODE_LENGTH = 6
ACCESS_CODE_ATTEMPTS = 10

TELECONSULTATION_ARTICLE = "Teleconsultation KoKo Sante"


def generate_access_code() -> str:
    """Random access code from the unambiguous alphabet."""
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def generate_channel_name() -> str:
    """Opaque channel identifier for the video transport."""
    return f"teleconsult-{secrets.token_hex(8)}"


class TeleconsultationService:
    """Service for opening teleconsultation sessions."""

    def __init__(self, db: AsyncSession, feed: ChangeFeed | None = None):
        """Initialize service with database session and change feed."""
        self.db = db
        self.feed = feed

    async def _unique_access_code(self) -> str:
        """
        Draw access codes until one is unused by a live session.

        Raises:
            PersistenceException: If every attempt collided
        """
        for _ in range(ACCESS_CODE_ATTEMPTS):
            code = generate_access_code()
            result = await self.db.execute(
                select(teleconsultation_sessions.c.id).where(
                    teleconsultation_sessions.c.access_code == code,
                    teleconsultation_sessions.c.status.in_(LIVE_SESSION_STATUSES),
                )
            )
            if result.first() is None:
                return code

        logger.error("access_code_exhausted", attempts=ACCESS_CODE_ATTEMPTS)
        raise PersistenceException("Could not allocate an access code, please retry")

    async def initialize_session(
        self,
        data: TeleconsultationInitRequest,
        user: dict,
    ) -> TeleconsultationInitResponse:
        """
        Open a teleconsultation session.

        Free sessions (no amount, or a doctor who does not charge) are created
        already paid and return their access code. Paid sessions return a
        checkout URL; the code reaches the patient with the payment
        confirmation.

        Args:
            data: Validated request
            user: Authenticated user

        Returns:
            Session id plus either the access code or the checkout URL

        Raises:
            NotFoundException: If the doctor or patient does not exist
            BadRequestException: If the doctor does not offer teleconsultation
            ConfigurationException: If a paid session is requested without a gateway
            PersistenceException: If the session could not be stored
        """
        patient = await UserService.resolve_patient(self.db, user, data.patient_id)

        doctor = await UserService.get_doctor(self.db, data.doctor_id)
        if not doctor:
            raise NotFoundException("Doctor not found")
        if not doctor["teleconsultation_enabled"]:
            raise BadRequestException("This doctor does not offer teleconsultation")

        is_free = data.amount <= 0 or bool(doctor["is_teleconsultation_free"])
        if not is_free:
            gateway_urls()

        now = utc_now()
        session: dict[str, Any] = {
            "id": uuid4(),
            "doctor_id": doctor["id"],
            "patient_id": patient["id"],
            "channel_name": generate_channel_name(),
            "access_code": await self._unique_access_code(),
            "duration_minutes": data.duration,
            "amount": 0 if is_free else data.amount,
            "status": SessionStatus.PAID.value if is_free else SessionStatus.PENDING.value,
            "started_at": None,
            "ended_at": None,
            "created_at": now,
            "updated_at": now,
        }

        if is_free:
            return await self._create_free_session(session, doctor)
        return await self._create_paid_session(session, data)

    async def _create_free_session(
        self,
        session: dict[str, Any],
        doctor: dict,
    ) -> TeleconsultationInitResponse:
        notification = build_notification(
            doctor["user_id"],
            NotificationType.TELECONSULTATION,
            "Nouvelle téléconsultation",
            f"Un patient a ouvert une téléconsultation gratuite de "
            f"{session['duration_minutes']} minutes.",
            TeleconsultationNotificationData(
                session_id=session["id"],
                channel_name=session["channel_name"],
                duration=session["duration_minutes"],
                action="free_session",
            ),
        )

        try:
            await self.db.execute(insert(teleconsultation_sessions).values(**session))
            events = [ChangeEvent.insert("teleconsultation_sessions", session)]
            events += await NotificationService(self.db).stage([notification])
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("teleconsultation_insert_failed", error=str(e))
            raise PersistenceException() from e

        logger.info(
            "teleconsultation_free_session_created",
            session_id=str(session["id"]),
            doctor_id=str(session["doctor_id"]),
        )
        await self._publish(events)

        return TeleconsultationInitResponse(
            session_id=session["id"],
            access_code=session["access_code"],
            channel_name=session["channel_name"],
            is_free=True,
        )

    async def _create_paid_session(
        self,
        session: dict[str, Any],
        data: TeleconsultationInitRequest,
    ) -> TeleconsultationInitResponse:
        payment = new_payment_values(
            amount=session["amount"],
            patient_id=session["patient_id"],
            session_id=session["id"],
        )

        try:
            await self.db.execute(insert(teleconsultation_sessions).values(**session))
            await self.db.execute(insert(payments).values(**payment))
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning("teleconsultation_insert_conflict", error=str(e))
            raise PersistenceException() from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("teleconsultation_insert_failed", error=str(e))
            raise PersistenceException() from e

        logger.info(
            "teleconsultation_session_created",
            session_id=str(session["id"]),
            payment_id=str(payment["id"]),
            amount=session["amount"],
        )
        await self._publish(
            [
                ChangeEvent.insert("teleconsultation_sessions", session),
                ChangeEvent.insert("payments", payment),
            ]
        )

        payment_url, _ = build_checkout(
            payment_id=payment["id"],
            amount=payment["amount"],
            article=TELECONSULTATION_ARTICLE,
            customer_phone=data.customer_phone,
            customer_name=data.customer_name,
            correlation={
                "sessionId": session["id"],
                "paymentId": payment["id"],
                "patientId": session["patient_id"],
            },
        )

        return TeleconsultationInitResponse(session_id=session["id"], payment_url=payment_url)

    async def _publish(self, events: list[ChangeEvent]) -> None:
        if self.feed is not None:
            await self.feed.publish(events)
