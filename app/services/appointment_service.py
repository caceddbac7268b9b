"""Appointment service for business logic."""

from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    PersistenceException,
)
from app.models.appointments import appointments
from app.models.base import utc_now
from app.models.payments import payments
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.schemas.appointments import (
    STAFF_TRANSITIONS,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentStatusUpdate,
)
from app.schemas.notifications import AppointmentNotificationData, NotificationType
from app.services.notification_service import NotificationService, build_notification
from app.services.user_service import UserService

logger = structlog.get_logger(__name__)


class AppointmentService:
    """Service for managing appointments."""

    def __init__(self, db: AsyncSession, feed: ChangeFeed | None = None):
        """Initialize service with database session and change feed."""
        self.db = db
        self.feed = feed

    async def create_appointment(self, user: dict, data: AppointmentCreate) -> dict:
        """
        Book an appointment for the authenticated patient.

        Args:
            user: Authenticated user
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            NotFoundException: If the patient profile or doctor does not exist
            ConflictException: If the slot is already taken
        """
        patient = await UserService.resolve_patient(self.db, user)
        if not await UserService.get_doctor(self.db, data.doctor_id):
            raise NotFoundException("Doctor not found")

        taken = await self.db.execute(
            select(appointments.c.id).where(
                appointments.c.doctor_id == data.doctor_id,
                appointments.c.appointment_date == data.appointment_date,
                appointments.c.appointment_time == data.appointment_time,
                appointments.c.status != AppointmentStatus.CANCELLED.value,
            )
        )
        if taken.first() is not None:
            raise ConflictException("This time slot is already booked")

        now = utc_now()
        values: dict[str, Any] = {
            "id": uuid4(),
            "patient_id": patient["id"],
            "doctor_id": data.doctor_id,
            "clinic_id": data.clinic_id,
            "appointment_date": data.appointment_date,
            "appointment_time": data.appointment_time,
            "status": AppointmentStatus.PENDING.value,
            "is_first_visit": data.is_first_visit,
            "cancellation_reason": None,
            "confirmed_at": None,
            "cancelled_at": None,
            "created_at": now,
            "updated_at": now,
        }

        try:
            await self.db.execute(insert(appointments).values(**values))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("appointment_insert_failed", error=str(e))
            raise PersistenceException() from e

        logger.info(
            "appointment_booked",
            appointment_id=str(values["id"]),
            doctor_id=str(data.doctor_id),
        )
        await self._publish([ChangeEvent.insert("appointments", values)])
        return values

    async def get_appointment_row(self, appointment_id: UUID) -> dict:
        """
        Load an appointment without access checks.

        Raises:
            NotFoundException: If appointment not found
        """
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Appointment not found")
        return dict(row)

    async def get_appointment(self, appointment_id: UUID, user: dict) -> dict:
        """
        Get appointment by ID.

        Args:
            appointment_id: Appointment ID
            user: Requesting user

        Returns:
            Appointment details

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If user doesn't have access
        """
        appointment = await self.get_appointment_row(appointment_id)

        if not UserService.is_staff(user):
            patient = await UserService.get_patient_for_user(self.db, user["id"])
            if not patient or patient["id"] != appointment["patient_id"]:
                raise ForbiddenException("Access denied to this appointment")

        return appointment

    async def update_status(
        self,
        appointment_id: UUID,
        data: AppointmentStatusUpdate,
        user: dict,
    ) -> dict:
        """
        Apply a manual status change by staff.

        Refused while a payment for the appointment is pending, so the
        payment webhook stays the only writer during checkout.

        Raises:
            ForbiddenException: If the user is not staff
            NotFoundException: If appointment not found
            ConflictException: If the transition is not allowed now
        """
        if not UserService.is_staff(user):
            raise ForbiddenException("Only clinic staff can change appointment status")

        current = await self.get_appointment_row(appointment_id)
        current_status = AppointmentStatus(current["status"])

        if data.status not in STAFF_TRANSITIONS.get(current_status, frozenset()):
            raise ConflictException(
                f"Cannot change status from {current_status.value} to {data.status.value}"
            )

        pending_payment = await self.db.execute(
            select(payments.c.id).where(
                payments.c.appointment_id == appointment_id,
                payments.c.status == "pending",
            )
        )
        if pending_payment.first() is not None:
            raise ConflictException("A payment for this appointment is in progress")

        now = utc_now()
        values: dict[str, Any] = {"status": data.status.value, "updated_at": now}
        if data.status is AppointmentStatus.CONFIRMED:
            values["confirmed_at"] = now
        elif data.status is AppointmentStatus.CANCELLED:
            values["cancelled_at"] = now
            values["cancellation_reason"] = data.cancellation_reason or "Cancelled by clinic"

        try:
            result = await self.db.execute(
                update(appointments)
                .where(
                    appointments.c.id == appointment_id,
                    appointments.c.status == current_status.value,
                )
                .values(**values)
                .returning(appointments)
            )
            row = result.mappings().first()
            if row is None:
                await self.db.rollback()
                raise ConflictException("Appointment was modified concurrently")
            updated = dict(row)

            events = [ChangeEvent.update("appointments", updated, old=current)]
            events += await self._notify_patient(updated, data.status)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("appointment_status_update_failed", error=str(e))
            raise PersistenceException() from e

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            from_status=current_status.value,
            to_status=data.status.value,
            by_user=str(user["id"]),
        )
        await self._publish(events)
        return updated

    async def _notify_patient(
        self,
        appointment: dict,
        new_status: AppointmentStatus,
    ) -> list[ChangeEvent]:
        if new_status is AppointmentStatus.CONFIRMED:
            notification_type = NotificationType.APPOINTMENT_CONFIRMED
            title = "Rendez-vous confirmé"
            message = (
                f"Votre rendez-vous du {appointment['appointment_date']} "
                f"à {appointment['appointment_time']:%H:%M} est confirmé."
            )
        elif new_status is AppointmentStatus.CANCELLED:
            notification_type = NotificationType.APPOINTMENT_CANCELLED
            title = "Rendez-vous annulé"
            message = f"Votre rendez-vous du {appointment['appointment_date']} a été annulé."
        else:
            return []

        patient = await UserService.get_patient(self.db, appointment["patient_id"])
        if not patient:
            return []

        row = build_notification(
            patient["user_id"],
            notification_type,
            title,
            message,
            AppointmentNotificationData(
                appointment_id=appointment["id"],
                action=new_status.value,
                reason=appointment.get("cancellation_reason"),
            ),
        )
        return await NotificationService(self.db).stage([row])

    async def _publish(self, events: list[ChangeEvent]) -> None:
        if self.feed is not None:
            await self.feed.publish(events)
