"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Statuses that occupy a slot in the doctor's queue
QUEUED_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

# Manual transitions allowed for staff
STAFF_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
}


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment."""

    doctor_id: UUID
    clinic_id: UUID | None = None
    appointment_date: date
    appointment_time: time
    is_first_visit: bool = False


class AppointmentStatusUpdate(BaseModel):
    """Schema for a manual status change by staff."""

    status: AppointmentStatus
    cancellation_reason: str | None = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    clinic_id: UUID | None
    appointment_date: date
    appointment_time: time
    status: AppointmentStatus
    is_first_visit: bool
    cancellation_reason: str | None
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
