"""WebSocket stream of row changes."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.database import AsyncSessionLocal
from app.dependencies import user_id_from_token
from app.realtime.events import ChangeEvent
from app.realtime.subscriptions import get_subscription_manager
from app.services.user_service import UserService

logger = structlog.get_logger(__name__)

router = APIRouter()

# Streamable tables and the columns a client may filter on
STREAM_FILTERS: dict[str, frozenset[str]] = {
    "appointments": frozenset({"doctor_id"}),
    "notifications": frozenset({"user_id"}),
}

# What a patient sees of someone else's appointment
SHARED_APPOINTMENT_FIELDS = ("doctor_id", "appointment_date")

STALE_MESSAGE = {"type": "stale"}


@dataclass(frozen=True)
class Viewer:
    """The authenticated user behind a stream."""

    user: dict
    patient_id: str | None = None

    @property
    def is_staff(self) -> bool:
        return UserService.is_staff(self.user)


async def resolve_viewer(token: str) -> Viewer | None:
    """
    Authenticate a stream token.

    The session is closed before the stream starts so an open socket never
    holds a pooled connection.
    """
    user_id = user_id_from_token(token)
    if user_id is None:
        return None

    async with AsyncSessionLocal() as db:
        user = await UserService.get_user_by_id(db, user_id)
        if not user or not user["is_active"]:
            return None
        if UserService.is_staff(user):
            return Viewer(user)
        patient = await UserService.get_patient_for_user(db, user["id"])

    return Viewer(user, str(patient["id"]) if patient else None)


def appointment_view(viewer: Viewer) -> Callable[[ChangeEvent], ChangeEvent]:
    """Staff and the row's own patient get full rows; others only learn that the day changed."""

    def present(event: ChangeEvent) -> ChangeEvent:
        if viewer.is_staff:
            return event
        if viewer.patient_id is not None and event.row.get("patient_id") == viewer.patient_id:
            return event

        def reduce(image: dict | None) -> dict | None:
            if image is None:
                return None
            return {field: image.get(field) for field in SHARED_APPOINTMENT_FIELDS}

        return event.model_copy(update={"new": reduce(event.new), "old": reduce(event.old)})

    return present


def _unchanged(event: ChangeEvent) -> ChangeEvent:
    return event


async def _forward(
    websocket: WebSocket,
    queue: "asyncio.Queue[ChangeEvent | None]",
    present: Callable[[ChangeEvent], ChangeEvent],
) -> None:
    while True:
        item = await queue.get()
        if item is None:
            await websocket.send_json(STALE_MESSAGE)
        else:
            await websocket.send_text(present(item).to_json())


@router.websocket("/ws")
async def realtime_stream(
    websocket: WebSocket,
    table: str = Query(...),
    token: str = Query(...),
    column: str | None = Query(None),
    value: str | None = Query(None),
) -> None:
    """
    Stream change events of one table to an authenticated client.

    Notification streams are always restricted to the caller's own rows;
    appointment streams must be filtered by doctor.
    """
    viewer = await resolve_viewer(token)
    if viewer is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    allowed_columns = STREAM_FILTERS.get(table)
    if allowed_columns is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    present = _unchanged
    if table == "notifications":
        column, value = "user_id", str(viewer.user["id"])
    elif column not in allowed_columns or not value:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    else:
        present = appointment_view(viewer)

    user_id = str(viewer.user["id"])
    queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
    # Subscribed before the handshake completes, so nothing committed after
    # the client sees the socket open is missed
    handle = get_subscription_manager().subscribe(
        table,
        queue.put_nowait,
        column=column,
        value=value,
        on_stale=lambda: queue.put_nowait(None),
    )
    sender: asyncio.Task | None = None

    try:
        await websocket.accept()
        sender = asyncio.create_task(_forward(websocket, queue, present))
        logger.info("realtime_stream_opened", table=table, user_id=user_id)
        while True:
            # Client messages are ignored; receiving detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("realtime_client_disconnected", table=table)
    finally:
        handle.close()
        if sender is not None:
            sender.cancel()
        logger.info("realtime_stream_closed", table=table, user_id=user_id)
