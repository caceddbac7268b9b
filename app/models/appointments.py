"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Table,
    Text,
    Time,
    Uuid,
)

from app.models.base import metadata, utc_now

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column("patient_id", Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
    Column("doctor_id", Uuid, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False),
    Column("clinic_id", Uuid, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True),
    # Slot
    Column("appointment_date", Date, nullable=False),
    Column("appointment_time", Time, nullable=False),
    # Status management
    Column("status", Text, nullable=False, server_default="pending"),
    Column("is_first_visit", Boolean, nullable=False, server_default="0"),
    Column("cancellation_reason", Text, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    ),
    Column("confirmed_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'no_show')",
        name="appointments_status_check",
    ),
    # Queue lookups: one doctor, one day, ordered by time
    Index("idx_appointments_doctor_day", "doctor_id", "appointment_date", "appointment_time"),
    Index("idx_appointments_patient", "patient_id"),
)
