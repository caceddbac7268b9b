"""Live queue position for one appointment."""

from collections.abc import Awaitable, Callable
from enum import Enum
from types import TracebackType
from typing import Any

import structlog

from app.realtime.events import ChangeEvent
from app.realtime.subscriptions import SubscriptionHandle, SubscriptionManager
from app.schemas.queue import QueuePosition

logger = structlog.get_logger(__name__)

PositionFetcher = Callable[[], Awaitable[QueuePosition]]


class TrackerStatus(str, Enum):
    """Lifecycle of a tracked value."""

    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class QueuePositionTracker:
    """
    Keep a queue position current by refetching on every change to the
    doctor's appointments.

    On a failed fetch the last known position is kept but ``status`` becomes
    ``error`` and ``is_authoritative`` is False, so a stale value is never
    shown as current.
    """

    def __init__(
        self,
        fetch_position: PositionFetcher,
        manager: SubscriptionManager,
        doctor_id: Any,
    ):
        """Initialize tracker; call ``start`` to subscribe and load."""
        self._fetch_position = fetch_position
        self._manager = manager
        self.doctor_id = str(doctor_id)
        self.status = TrackerStatus.LOADING
        self.position: QueuePosition | None = None
        self.error: str | None = None
        self._handle: SubscriptionHandle | None = None

    @property
    def is_authoritative(self) -> bool:
        """True only when ``position`` reflects the latest successful fetch."""
        return self.status is TrackerStatus.READY

    async def start(self) -> "QueuePositionTracker":
        """Subscribe to appointment changes and load the first value."""
        if self._handle is None:
            self._handle = self._manager.subscribe(
                "appointments",
                self._on_change,
                column="doctor_id",
                value=self.doctor_id,
                on_stale=self._on_stale,
            )
        await self.refresh()
        return self

    async def refresh(self) -> None:
        """Recompute the position from the server."""
        self.status = TrackerStatus.LOADING
        try:
            position = await self._fetch_position()
        except Exception as e:
            self.status = TrackerStatus.ERROR
            self.error = str(e) or type(e).__name__
            logger.warning(
                "queue_position_refresh_failed",
                doctor_id=self.doctor_id,
                error=self.error,
            )
            return

        self.position = position
        self.status = TrackerStatus.READY
        self.error = None

    async def _on_change(self, event: ChangeEvent) -> None:
        await self.refresh()

    def _on_stale(self) -> None:
        self.status = TrackerStatus.ERROR
        self.error = "Realtime connection lost"

    def close(self) -> None:
        """Release the subscription."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    async def __aenter__(self) -> "QueuePositionTracker":
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
