"""Teleconsultation sessions table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from app.models.base import metadata, utc_now

# Statuses after which a session can no longer be joined
TERMINAL_SESSION_STATUSES = ("completed", "cancelled")

teleconsultation_sessions = Table(
    "teleconsultation_sessions",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("doctor_id", Uuid, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False),
    Column("patient_id", Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
    # Opaque channel identifier handed to the video transport
    Column("channel_name", Text, nullable=False),
    Column("access_code", String(6), nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default="30"),
    Column("amount", Integer, nullable=False, server_default="0"),
    Column("status", Text, nullable=False, server_default="pending"),
    Column("started_at", DateTime(timezone=True), nullable=True),
    Column("ended_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    ),
    CheckConstraint(
        "status IN ('pending', 'paid', 'active', 'completed', 'cancelled')",
        name="teleconsultation_sessions_status_check",
    ),
    Index("idx_teleconsultation_sessions_code", "access_code"),
    Index(
        "uq_teleconsultation_sessions_live_code",
        "access_code",
        unique=True,
        postgresql_where=text("status IN ('pending', 'paid', 'active')"),
        sqlite_where=text("status IN ('pending', 'paid', 'active')"),
    ),
)
