"""In-app notification table."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import JSONType, metadata, utc_now

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("type", String(50), nullable=False),
    Column("title", Text, nullable=False),
    Column("message", Text, nullable=True),
    # Weak back-reference to the appointment / session that caused it
    Column("data", JSONType, nullable=True),
    Column("is_read", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    CheckConstraint(
        "type IN ('appointment_confirmed', 'appointment_cancelled', 'payment_success', "
        "'new_appointment', 'teleconsultation', 'queue_update', 'reminder', 'urgent', "
        "'system')",
        name="notifications_type_check",
    ),
    Index("idx_notifications_user_created", "user_id", "created_at"),
    Index("idx_notifications_user_unread", "user_id", "is_read"),
)
