"""Payments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
    Uuid,
    text,
)

from app.models.base import metadata, utc_now

payments = Table(
    "payments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Exactly one of appointment_id / session_id is the thing being settled
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column(
        "session_id",
        Uuid,
        ForeignKey("teleconsultation_sessions.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column("patient_id", Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
    # Amount in FCFA (no minor unit)
    Column("amount", Integer, nullable=False),
    Column("status", Text, nullable=False, server_default="pending"),
    Column("payment_type", Text, nullable=False, server_default="deposit"),
    Column("provider", Text, nullable=False, server_default="moneyfusion"),
    # Placeholder (own id) until the gateway token is known
    Column("transaction_ref", Text, nullable=True),
    Column("paid_at", DateTime(timezone=True), nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    ),
    CheckConstraint(
        "status IN ('pending', 'success', 'failed')",
        name="payments_status_check",
    ),
    CheckConstraint(
        "payment_type IN ('deposit', 'balance')",
        name="payments_type_check",
    ),
    CheckConstraint(
        "appointment_id IS NOT NULL OR session_id IS NOT NULL",
        name="payments_target_check",
    ),
    Index("idx_payments_transaction_ref", "transaction_ref"),
    Index("idx_payments_status_created", "status", "created_at"),
    # One competing pending payment per appointment / session
    Index(
        "uq_payments_pending_appointment",
        "appointment_id",
        unique=True,
        postgresql_where=text("status = 'pending' AND appointment_id IS NOT NULL"),
        sqlite_where=text("status = 'pending' AND appointment_id IS NOT NULL"),
    ),
    Index(
        "uq_payments_pending_session",
        "session_id",
        unique=True,
        postgresql_where=text("status = 'pending' AND session_id IS NOT NULL"),
        sqlite_where=text("status = 'pending' AND session_id IS NOT NULL"),
    ),
)
