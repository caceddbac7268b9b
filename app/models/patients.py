"""Patient directory table."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Table, Uuid

from app.models.base import metadata, utc_now

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)
