"""
Async HTTP client for this API.

Used by the client-side state containers (queue tracker, notification
cache) to fetch authoritative values over HTTP.
"""

from types import TracebackType
from typing import Any
from uuid import UUID

import httpx

from app.config import settings
from app.schemas.queue import QueuePosition


class KokoApiClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` with bearer auth.

    Example:
        async with KokoApiClient("https://api.example.org", token) as api:
            position = await api.get_queue_position(appointment_id)
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client for one authenticated user."""
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}{settings.api_v1_prefix}",
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "KokoApiClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def get_queue_position(self, appointment_id: UUID | str) -> QueuePosition:
        """Fetch the queue position of an appointment."""
        response = await self._client.get(f"/appointments/{appointment_id}/queue-position")
        response.raise_for_status()
        return QueuePosition.model_validate(response.json())

    async def list_notifications(self, limit: int = 50) -> list[dict[str, Any]]:
        """Fetch the newest notifications of the caller."""
        response = await self._client.get("/notifications", params={"limit": limit})
        response.raise_for_status()
        return response.json()

    async def mark_as_read(self, notification_id: UUID | str) -> dict[str, Any]:
        """Mark one notification read."""
        response = await self._client.patch(f"/notifications/{notification_id}/read")
        response.raise_for_status()
        return response.json()

    async def mark_all_as_read(self) -> int:
        """Mark every notification read; returns how many changed."""
        response = await self._client.post("/notifications/read-all")
        response.raise_for_status()
        return int(response.json()["updated"])
