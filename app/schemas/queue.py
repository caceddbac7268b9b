"""Queue position schemas."""

from pydantic import Field

from app.schemas.base import CamelModel


class QueuePosition(CamelModel):
    """Derived place of an appointment in its doctor's queue for the day."""

    position: int = Field(..., ge=1, description="1 means next in line")
    total_in_queue: int = Field(..., ge=0)
    estimated_wait_minutes: int = Field(..., ge=0)
