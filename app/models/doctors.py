"""Doctor directory table."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utc_now

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Login account; notifications for the doctor target this user
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("specialty", Text, nullable=False),
    Column("teleconsultation_enabled", Boolean, nullable=False, server_default="1"),
    Column("is_teleconsultation_free", Boolean, nullable=False, server_default="0"),
    Column("teleconsultation_price_per_minute", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)
