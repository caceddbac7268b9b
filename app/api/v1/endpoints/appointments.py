"""Appointment and queue endpoints."""

from datetime import date, time
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import CurrentUser, DatabaseSession, Feed, StaffUser
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatusUpdate,
)
from app.schemas.queue import QueuePosition
from app.services.appointment_service import AppointmentService
from app.services.queue_service import QueueService

router = APIRouter()


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
) -> AppointmentResponse:
    """
    Book a pending appointment for the authenticated patient.

    Args:
        data: Appointment creation data
        current_user: Authenticated user
        db: Database session
        feed: Change feed

    Returns:
        Created appointment
    """
    service = AppointmentService(db, feed)
    return await service.create_appointment(current_user, data)


@router.get(
    "/queue",
    response_model=QueuePosition,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Queue position of a time slot",
)
async def get_slot_queue_position(
    current_user: CurrentUser,
    db: DatabaseSession,
    doctor_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
    slot: time = Query(..., alias="time"),
) -> QueuePosition:
    """
    Position a time slot would have in a doctor's queue.

    Appointments at exactly the same time share the position.
    """
    return await QueueService(db).calculate_queue_position(doctor_id, day, slot)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        current_user: Authenticated user
        db: Database session

    Returns:
        Appointment details
    """
    service = AppointmentService(db)
    return await service.get_appointment(appointment_id, current_user)


@router.get(
    "/{appointment_id}/queue-position",
    response_model=QueuePosition,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Queue position of an appointment",
)
async def get_queue_position(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> QueuePosition:
    """
    Current place of an appointment in its doctor's queue for the day.

    Appointments booked earlier for the same time come first.
    """
    appointment = await AppointmentService(db).get_appointment(appointment_id, current_user)
    return await QueueService(db).position_for_appointment(appointment)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Change appointment status (staff)",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    staff_user: StaffUser,
    db: DatabaseSession,
    feed: Feed,
) -> AppointmentResponse:
    """
    Confirm, complete, cancel or mark no-show.

    Refused with 409 while a payment for the appointment is pending.
    """
    service = AppointmentService(db, feed)
    return await service.update_status(appointment_id, data, staff_user)
