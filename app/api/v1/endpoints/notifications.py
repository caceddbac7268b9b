"""In-app notification endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import CurrentUser, DatabaseSession, Feed
from app.schemas.notifications import (
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from app.services.notification_service import NotificationService

router = APIRouter()


@router.get(
    "",
    response_model=list[NotificationResponse],
    status_code=status.HTTP_200_OK,
    tags=["Notifications"],
    summary="List my notifications",
)
async def list_notifications(
    current_user: CurrentUser,
    db: DatabaseSession,
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = Query(False),
) -> list[NotificationResponse]:
    """
    Newest notifications of the authenticated user.

    Args:
        current_user: Authenticated user
        db: Database session
        limit: Maximum number of notifications
        unread_only: Only unread notifications

    Returns:
        Notifications, newest first
    """
    service = NotificationService(db)
    return await service.list_for_user(current_user["id"], limit=limit, unread_only=unread_only)


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    status_code=status.HTTP_200_OK,
    tags=["Notifications"],
    summary="Count my unread notifications",
)
async def unread_count(current_user: CurrentUser, db: DatabaseSession) -> UnreadCountResponse:
    """Number of unread notifications of the authenticated user."""
    count = await NotificationService(db).unread_count(current_user["id"])
    return UnreadCountResponse(count=count)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Notifications"],
    summary="Mark a notification read",
)
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
) -> NotificationResponse:
    """Mark one of the user's notifications read."""
    service = NotificationService(db, feed)
    return await service.mark_as_read(notification_id, current_user["id"])


@router.post(
    "/read-all",
    response_model=MarkAllReadResponse,
    status_code=status.HTTP_200_OK,
    tags=["Notifications"],
    summary="Mark all my notifications read",
)
async def mark_all_read(
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
) -> MarkAllReadResponse:
    """Mark every unread notification of the user read."""
    updated = await NotificationService(db, feed).mark_all_as_read(current_user["id"])
    return MarkAllReadResponse(updated=updated)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Notifications"],
    summary="Delete a notification",
)
async def delete_notification(
    notification_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    feed: Feed,
) -> None:
    """Delete one of the user's notifications."""
    await NotificationService(db, feed).delete(notification_id, current_user["id"])
