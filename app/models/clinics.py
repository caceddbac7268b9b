"""Clinic and clinic secretary tables."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.models.base import metadata, utc_now

clinics = Table(
    "clinics",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)

clinic_secretaries = Table(
    "clinic_secretaries",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("clinic_id", Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False),
    Column("secretary_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    UniqueConstraint("clinic_id", "secretary_id", name="unique_clinic_secretary"),
    Index("idx_clinic_secretaries_clinic", "clinic_id"),
)
