"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
TIMESTAMPTZ = postgresql.TIMESTAMP(timezone=True)


def _id() -> sa.Column:
    return sa.Column(
        "id",
        UUID,
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
        primary_key=True,
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", TIMESTAMPTZ, server_default=sa.text("now()"), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", TIMESTAMPTZ, server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    """Create directory, appointment, payment, session and notification tables."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.Text(), server_default=sa.text("'patient'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
        sa.CheckConstraint(
            "role IN ('patient', 'doctor', 'secretary', 'admin')",
            name="users_role_check",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "doctors",
        _id(),
        sa.Column(
            "user_id",
            UUID,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("specialty", sa.Text(), nullable=False),
        sa.Column(
            "teleconsultation_enabled",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
        sa.Column(
            "is_teleconsultation_free",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("teleconsultation_price_per_minute", sa.Integer(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "patients",
        _id(),
        sa.Column(
            "user_id",
            UUID,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        _created_at(),
    )

    op.create_table(
        "clinics",
        _id(),
        sa.Column("name", sa.Text(), nullable=False),
        _created_at(),
    )

    op.create_table(
        "clinic_secretaries",
        _id(),
        sa.Column(
            "clinic_id",
            UUID,
            sa.ForeignKey("clinics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "secretary_id",
            UUID,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("clinic_id", "secretary_id", name="unique_clinic_secretary"),
    )
    op.create_index("idx_clinic_secretaries_clinic", "clinic_secretaries", ["clinic_id"])

    op.create_table(
        "appointments",
        _id(),
        sa.Column(
            "patient_id",
            UUID,
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "doctor_id",
            UUID,
            sa.ForeignKey("doctors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "clinic_id",
            UUID,
            sa.ForeignKey("clinics.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.Time(), nullable=False),
        sa.Column("status", sa.Text(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("is_first_visit", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column("confirmed_at", TIMESTAMPTZ, nullable=True),
        sa.Column("cancelled_at", TIMESTAMPTZ, nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'no_show')",
            name="appointments_status_check",
        ),
    )
    op.create_index(
        "idx_appointments_doctor_day",
        "appointments",
        ["doctor_id", "appointment_date", "appointment_time"],
    )
    op.create_index("idx_appointments_patient", "appointments", ["patient_id"])

    op.create_table(
        "teleconsultation_sessions",
        _id(),
        sa.Column(
            "doctor_id",
            UUID,
            sa.ForeignKey("doctors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "patient_id",
            UUID,
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel_name", sa.Text(), nullable=False),
        sa.Column("access_code", sa.String(6), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), server_default=sa.text("30"), nullable=False),
        sa.Column("amount", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.Text(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("started_at", TIMESTAMPTZ, nullable=True),
        sa.Column("ended_at", TIMESTAMPTZ, nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'active', 'completed', 'cancelled')",
            name="teleconsultation_sessions_status_check",
        ),
    )
    op.create_index(
        "idx_teleconsultation_sessions_code",
        "teleconsultation_sessions",
        ["access_code"],
    )

    op.create_table(
        "payments",
        _id(),
        sa.Column(
            "appointment_id",
            UUID,
            sa.ForeignKey("appointments.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "session_id",
            UUID,
            sa.ForeignKey("teleconsultation_sessions.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "patient_id",
            UUID,
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.Text(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("payment_type", sa.Text(), server_default=sa.text("'deposit'"), nullable=False),
        sa.Column("provider", sa.Text(), server_default=sa.text("'moneyfusion'"), nullable=False),
        sa.Column("transaction_ref", sa.Text(), nullable=True),
        sa.Column("paid_at", TIMESTAMPTZ, nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="payments_status_check",
        ),
        sa.CheckConstraint(
            "payment_type IN ('deposit', 'balance')",
            name="payments_type_check",
        ),
        sa.CheckConstraint(
            "appointment_id IS NOT NULL OR session_id IS NOT NULL",
            name="payments_target_check",
        ),
    )
    op.create_index("idx_payments_transaction_ref", "payments", ["transaction_ref"])
    op.create_index("idx_payments_status_created", "payments", ["status", "created_at"])

    op.create_table(
        "notifications",
        _id(),
        sa.Column(
            "user_id",
            UUID,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _created_at(),
        sa.CheckConstraint(
            "type IN ('appointment_confirmed', 'appointment_cancelled', 'payment_success', "
            "'new_appointment', 'teleconsultation', 'queue_update', 'reminder', 'urgent', "
            "'system')",
            name="notifications_type_check",
        ),
    )
    op.create_index(
        "idx_notifications_user_created",
        "notifications",
        ["user_id", "created_at"],
    )
    op.create_index("idx_notifications_user_unread", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("notifications")
    op.drop_table("payments")
    op.drop_table("teleconsultation_sessions")
    op.drop_table("appointments")
    op.drop_table("clinic_secretaries")
    op.drop_table("clinics")
    op.drop_table("patients")
    op.drop_table("doctors")
    op.drop_table("users")
