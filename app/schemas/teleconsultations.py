"""Teleconsultation session schemas."""

from enum import Enum
from uuid import UUID

from pydantic import Field, field_validator

from app.schemas.base import CamelModel
from app.schemas.payments import normalize_phone


class SessionStatus(str, Enum):
    """Teleconsultation session status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


LIVE_SESSION_STATUSES = (
    SessionStatus.PENDING.value,
    SessionStatus.PAID.value,
    SessionStatus.ACTIVE.value,
)


class TeleconsultationInitRequest(CamelModel):
    """Schema for opening a teleconsultation session."""

    doctor_id: UUID
    duration: int = Field(..., gt=0, le=240, description="Duration in minutes")
    amount: int = Field(0, description="Amount in FCFA; zero or less means free")
    customer_phone: str
    customer_name: str = Field(..., min_length=1, max_length=200)
    patient_id: UUID | None = None

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate phone number length."""
        return normalize_phone(v)


class TeleconsultationInitResponse(CamelModel):
    """Outcome of opening a session.

    Paid sessions carry a ``paymentUrl`` only; the access code is disclosed
    once the payment is confirmed.
    """

    success: bool = True
    session_id: UUID
    payment_url: str | None = None
    access_code: str | None = None
    channel_name: str | None = None
    is_free: bool = False


class AccessCodeVerifyRequest(CamelModel):
    """Schema for joining a session with its access code."""

    code: str = Field(..., max_length=64)


class SessionData(CamelModel):
    """What the video client needs to join."""

    channel_name: str
    doctor_id: UUID
    duration: int


class AccessCodeVerifyResponse(CamelModel):
    """Verdict on an access code."""

    valid: bool
    message: str | None = None
    session_data: SessionData | None = None
