"""Queue position calculation."""

from collections.abc import Iterable, Mapping
from datetime import date, time
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.appointments import appointments
from app.schemas.appointments import QUEUED_STATUSES
from app.schemas.queue import QueuePosition


def _is_ahead(
    entry: Mapping[str, Any],
    target_time: time,
    target: Mapping[str, Any] | None,
) -> bool:
    if entry["appointment_time"] < target_time:
        return True
    if target is None or entry["appointment_time"] != target_time:
        return False
    if entry["id"] == target["id"]:
        return False
    # Same slot: earlier bookings go first
    return (entry["created_at"], str(entry["id"])) < (target["created_at"], str(target["id"]))


def rank_in_queue(
    entries: Iterable[Mapping[str, Any]],
    target_time: time,
    target: Mapping[str, Any] | None = None,
    avg_consultation_minutes: int | None = None,
) -> QueuePosition:
    """
    Compute a queue position from the day's queued appointments.

    Args:
        entries: Pending/confirmed appointments of one doctor on one day
        target_time: Time slot being ranked
        target: The appointment being ranked, when known; breaks ties
            between identical times by creation order
        avg_consultation_minutes: Minutes per consultation ahead

    Returns:
        Position (1 means next), queue size and estimated wait
    """
    avg = (
        settings.queue_avg_consultation_minutes
        if avg_consultation_minutes is None
        else avg_consultation_minutes
    )
    entries = list(entries)
    ahead = sum(1 for entry in entries if _is_ahead(entry, target_time, target))
    position = ahead + 1

    return QueuePosition(
        position=position,
        total_in_queue=len(entries),
        estimated_wait_minutes=max(0, (position - 1) * avg),
    )


class QueueService:
    """Service for queue positions."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def queued_appointments(self, doctor_id: UUID, day: date) -> list[dict]:
        """Pending and confirmed appointments of a doctor for a day, in queue order."""
        result = await self.db.execute(
            select(
                appointments.c.id,
                appointments.c.appointment_time,
                appointments.c.created_at,
                appointments.c.status,
            )
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.appointment_date == day,
                appointments.c.status.in_(QUEUED_STATUSES),
            )
            .order_by(
                appointments.c.appointment_time,
                appointments.c.created_at,
                appointments.c.id,
            )
        )
        return [dict(row) for row in result.mappings()]

    async def calculate_queue_position(
        self,
        doctor_id: UUID,
        day: date,
        target_time: time,
        target: Mapping[str, Any] | None = None,
    ) -> QueuePosition:
        """
        Position of a time slot in a doctor's queue.

        Args:
            doctor_id: Doctor ID
            day: Appointment date
            target_time: Appointment time
            target: The appointment row being ranked, if any

        Returns:
            Queue position
        """
        entries = await self.queued_appointments(doctor_id, day)
        return rank_in_queue(entries, target_time, target)

    async def position_for_appointment(self, appointment: Mapping[str, Any]) -> QueuePosition:
        """Position of a booked appointment, ties broken by booking order."""
        return await self.calculate_queue_position(
            appointment["doctor_id"],
            appointment["appointment_date"],
            appointment["appointment_time"],
            target=appointment,
        )
