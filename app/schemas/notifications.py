"""In-app notification schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple, assert_never
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    """Notification type enumeration."""

    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    PAYMENT_SUCCESS = "payment_success"
    NEW_APPOINTMENT = "new_appointment"
    TELECONSULTATION = "teleconsultation"
    QUEUE_UPDATE = "queue_update"
    REMINDER = "reminder"
    URGENT = "urgent"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    """Display priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class NotificationStyle(NamedTuple):
    """How a notification type is presented."""

    icon: str
    label: str
    priority: NotificationPriority


def notification_style(notification_type: NotificationType) -> NotificationStyle:
    """
    Presentation attributes for a notification type.

    Adding a member to ``NotificationType`` without a branch here fails
    type checking.
    """
    match notification_type:
        case NotificationType.APPOINTMENT_CONFIRMED:
            return NotificationStyle(
                "calendar-check", "Rendez-vous confirmé", NotificationPriority.NORMAL
            )
        case NotificationType.APPOINTMENT_CANCELLED:
            return NotificationStyle(
                "calendar-x", "Rendez-vous annulé", NotificationPriority.HIGH
            )
        case NotificationType.PAYMENT_SUCCESS:
            return NotificationStyle("credit-card", "Paiement", NotificationPriority.NORMAL)
        case NotificationType.NEW_APPOINTMENT:
            return NotificationStyle(
                "calendar-plus", "Nouveau rendez-vous", NotificationPriority.NORMAL
            )
        case NotificationType.TELECONSULTATION:
            return NotificationStyle("video", "Téléconsultation", NotificationPriority.HIGH)
        case NotificationType.QUEUE_UPDATE:
            return NotificationStyle("users", "File d'attente", NotificationPriority.LOW)
        case NotificationType.REMINDER:
            return NotificationStyle("bell", "Rappel", NotificationPriority.NORMAL)
        case NotificationType.URGENT:
            return NotificationStyle("alert-triangle", "Urgent", NotificationPriority.HIGH)
        case NotificationType.SYSTEM:
            return NotificationStyle("info", "Système", NotificationPriority.LOW)
        case _:
            assert_never(notification_type)


class NotificationData(BaseModel):
    """Base for typed notification payloads stored in ``data``."""

    model_config = ConfigDict(extra="forbid")

    def to_json(self) -> dict[str, Any]:
        """Serialize for the JSON column, leaving out unset fields."""
        return self.model_dump(mode="json", exclude_none=True)


class AppointmentNotificationData(NotificationData):
    """Payload for appointment lifecycle notifications."""

    appointment_id: UUID
    patient_id: UUID | None = None
    action: str | None = None
    payment_ref: str | None = None
    reason: str | None = None


class PaymentNotificationData(NotificationData):
    """Payload for payment outcome notifications."""

    payment_id: UUID
    amount: int
    appointment_id: UUID | None = None
    session_id: UUID | None = None
    transaction_ref: str | None = None


class TeleconsultationNotificationData(NotificationData):
    """Payload for teleconsultation notifications."""

    session_id: UUID
    channel_name: str | None = None
    access_code: str | None = None
    duration: int | None = None
    action: str | None = None


class GenericNotificationData(NotificationData):
    """Free-form payload for reminders and system messages."""

    model_config = ConfigDict(extra="allow")


class NotificationResponse(BaseModel):
    """Schema for a stored notification."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str | None
    data: dict[str, Any] | None
    is_read: bool
    created_at: datetime


class UnreadCountResponse(BaseModel):
    """Number of unread notifications of the caller."""

    count: int = Field(..., ge=0)


class MarkAllReadResponse(BaseModel):
    """Result of marking every notification read."""

    updated: int = Field(..., ge=0)
