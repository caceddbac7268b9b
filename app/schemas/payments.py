"""Payment and MoneyFusion webhook schemas."""

import json
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from app.schemas.base import CamelModel

logger = structlog.get_logger(__name__)

MIN_PHONE_LENGTH = 8

SUCCESS_EVENTS = frozenset({"payin.session.completed"})
FAILURE_EVENTS = frozenset({"payin.session.cancelled"})
SUCCESS_STATUTS = frozenset({"paid"})
FAILURE_STATUTS = frozenset({"failure", "failed", "no paid", "cancelled"})

# Accepted spellings of each correlation id inside personal_Info
CORRELATION_KEYS = {
    "payment_id": ("paymentId", "payment_id"),
    "session_id": ("sessionId", "session_id"),
    "appointment_id": ("appointmentId", "appointment_id"),
    "patient_id": ("patientId", "patient_id"),
}


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentType(str, Enum):
    """What part of the fee a payment covers."""

    DEPOSIT = "deposit"
    BALANCE = "balance"


class WebhookOutcome(str, Enum):
    """Classification of a gateway notification."""

    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


def normalize_phone(value: str) -> str:
    """Strip a customer phone number and enforce the minimum length."""
    cleaned = value.strip()
    if len(cleaned) < MIN_PHONE_LENGTH:
        raise ValueError(f"Phone number must have at least {MIN_PHONE_LENGTH} characters")
    return cleaned


class PaymentInitRequest(CamelModel):
    """Schema for starting an appointment deposit payment."""

    amount: int = Field(..., gt=0, description="Amount in FCFA")
    appointment_id: UUID
    patient_id: UUID
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: str

    @field_validator("customer_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Reject names made only of whitespace."""
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Customer name is required")
        return cleaned

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate phone number length."""
        return normalize_phone(v)


class PaymentInitResponse(CamelModel):
    """Checkout details handed back to the client."""

    success: bool = True
    payment_id: UUID
    payment_url: str
    form_data: dict[str, str]


class PaymentCorrelation(BaseModel):
    """Identifiers echoed back by the gateway in ``personal_Info``."""

    payment_id: UUID | None = None
    session_id: UUID | None = None
    appointment_id: UUID | None = None
    patient_id: UUID | None = None

    @classmethod
    def from_personal_info(cls, raw: Any) -> "PaymentCorrelation":
        """
        Normalize the gateway's ``personal_Info`` field.

        The gateway may send it as a JSON string, an object, or an array
        wrapping one object. Anything unreadable yields an empty correlation.

        Args:
            raw: Raw ``personal_Info`` value

        Returns:
            Parsed correlation ids
        """
        if isinstance(raw, str | bytes):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("personal_info_not_json")
                return cls()

        if isinstance(raw, list):
            raw = next((item for item in raw if isinstance(item, dict)), None)

        if not isinstance(raw, dict):
            return cls()

        values: dict[str, UUID] = {}
        for field, keys in CORRELATION_KEYS.items():
            for key in keys:
                candidate = raw.get(key)
                if candidate in (None, ""):
                    continue
                try:
                    values[field] = UUID(str(candidate))
                except ValueError:
                    logger.warning("personal_info_bad_id", field=field)
                break

        return cls(**values)

    @property
    def is_empty(self) -> bool:
        """True when no identifier could be read."""
        return self.payment_id is None and self.session_id is None


class WebhookPayload(BaseModel):
    """
    MoneyFusion payment notification.

    Unknown fields are kept; the gateway adds fields without notice.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event: str | None = None
    statut: str | None = None
    token_pay: str | None = Field(None, validation_alias=AliasChoices("tokenPay", "token_pay"))
    personal_info: Any = Field(
        None,
        validation_alias=AliasChoices("personal_Info", "personal_info", "personalInfo"),
    )
    amount: float | None = Field(
        None,
        validation_alias=AliasChoices("Montant", "montant", "amount"),
    )

    @field_validator("statut", mode="before")
    @classmethod
    def coerce_statut(cls, v: Any) -> str | None:
        """The status endpoint reports ``statut`` as a bool at the top level."""
        if v is None or isinstance(v, str):
            return v
        return None

    @property
    def correlation(self) -> PaymentCorrelation:
        """Canonical correlation parsed from ``personal_Info``."""
        return PaymentCorrelation.from_personal_info(self.personal_info)

    @property
    def outcome(self) -> WebhookOutcome:
        """Classify the notification as success, failure, or unknown."""
        event = (self.event or "").strip().lower()
        statut = (self.statut or "").strip().lower()

        if event in SUCCESS_EVENTS or statut in SUCCESS_STATUTS:
            return WebhookOutcome.SUCCESS
        if event in FAILURE_EVENTS or statut in FAILURE_STATUTS:
            return WebhookOutcome.FAILURE
        return WebhookOutcome.UNKNOWN


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway."""

    success: bool = True
    applied: bool = False


class PaymentVerifyRequest(CamelModel):
    """Return-page poll: identify the payment by id or gateway token."""

    payment_id: UUID | None = None
    token: str | None = None

    @model_validator(mode="after")
    def require_identifier(self) -> "PaymentVerifyRequest":
        """Ensure at least one identifier is present."""
        if self.payment_id is None and not (self.token and self.token.strip()):
            raise ValueError("paymentId or token is required")
        return self


class PaymentVerifyResponse(CamelModel):
    """Current state of a payment and of what it settles."""

    success: bool = True
    payment_id: UUID
    status: PaymentStatus
    amount: int
    appointment_id: UUID | None = None
    appointment_status: str | None = None
    session_id: UUID | None = None
    session_status: str | None = None
