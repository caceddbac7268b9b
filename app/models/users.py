"""User model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utc_now

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("email", Text, nullable=False, index=True),
    Column("full_name", Text),
    Column("phone", String(20)),
    # Role drives dashboards and staff-only endpoints
    Column("role", Text, nullable=False, server_default="patient"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    CheckConstraint(
        "role IN ('patient', 'doctor', 'secretary', 'admin')",
        name="users_role_check",
    ),
)
