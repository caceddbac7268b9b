"""In-app notification service."""

from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.models.base import utc_now
from app.models.notifications import notifications
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.schemas.notifications import NotificationData, NotificationType

logger = structlog.get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


def build_notification(
    user_id: UUID,
    notification_type: NotificationType,
    title: str,
    message: str | None = None,
    data: NotificationData | dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build the column values of one notification row.

    IDs and timestamps are set here so the row can be published as-is after
    commit.
    """
    if isinstance(data, NotificationData):
        data = data.to_json()

    return {
        "id": uuid4(),
        "user_id": user_id,
        "type": notification_type.value,
        "title": title,
        "message": message,
        "data": data,
        "is_read": False,
        "created_at": utc_now(),
    }


class NotificationService:
    """Service for creating and managing in-app notifications."""

    def __init__(self, db: AsyncSession, feed: ChangeFeed | None = None):
        """Initialize service with database session and change feed."""
        self.db = db
        self.feed = feed

    async def stage(self, rows: list[dict[str, Any]]) -> list[ChangeEvent]:
        """
        Insert notification rows inside the caller's transaction.

        Nothing is committed; the returned events are published by the caller
        once its transaction commits.
        """
        if not rows:
            return []

        await self.db.execute(insert(notifications), rows)
        return [ChangeEvent.insert("notifications", row) for row in rows]

    async def list_for_user(
        self,
        user_id: UUID,
        limit: int | None = DEFAULT_LIST_LIMIT,
        unread_only: bool = False,
    ) -> list[dict]:
        """
        Newest notifications of a user.

        Args:
            user_id: Recipient
            limit: Maximum number of rows
            unread_only: Only return unread rows

        Returns:
            Notifications, newest first
        """
        query = select(notifications).where(notifications.c.user_id == user_id)
        if unread_only:
            query = query.where(notifications.c.is_read.is_(False))

        query = query.order_by(
            notifications.c.created_at.desc(),
            notifications.c.id.desc(),
        ).limit(limit)

        result = await self.db.execute(query)
        return [dict(row) for row in result.mappings()]

    async def unread_count(self, user_id: UUID) -> int:
        """Number of unread notifications of a user."""
        result = await self.db.execute(
            select(func.count())
            .select_from(notifications)
            .where(
                notifications.c.user_id == user_id,
                notifications.c.is_read.is_(False),
            )
        )
        return int(result.scalar_one())

    async def _get_owned(self, notification_id: UUID, user_id: UUID) -> dict:
        result = await self.db.execute(
            select(notifications).where(
                notifications.c.id == notification_id,
                notifications.c.user_id == user_id,
            )
        )
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Notification not found")
        return dict(row)

    async def mark_as_read(self, notification_id: UUID, user_id: UUID) -> dict:
        """
        Mark one of the user's notifications read.

        Raises:
            NotFoundException: If the notification does not exist or is not the user's
        """
        current = await self._get_owned(notification_id, user_id)
        if current["is_read"]:
            return current

        await self.db.execute(
            update(notifications)
            .where(notifications.c.id == notification_id)
            .values(is_read=True)
        )
        await self.db.commit()

        updated = {**current, "is_read": True}
        await self._publish([ChangeEvent.update("notifications", updated, old=current)])
        return updated

    async def mark_all_as_read(self, user_id: UUID) -> int:
        """Mark every unread notification of the user read; returns the count."""
        unread = await self.list_for_user(user_id, limit=None, unread_only=True)
        if not unread:
            return 0

        await self.db.execute(
            update(notifications)
            .where(
                notifications.c.user_id == user_id,
                notifications.c.id.in_([row["id"] for row in unread]),
            )
            .values(is_read=True)
        )
        await self.db.commit()

        await self._publish(
            [
                ChangeEvent.update("notifications", {**row, "is_read": True}, old=row)
                for row in unread
            ]
        )
        logger.info("notifications_marked_read", user_id=str(user_id), count=len(unread))
        return len(unread)

    async def delete(self, notification_id: UUID, user_id: UUID) -> None:
        """
        Delete one of the user's notifications.

        Raises:
            NotFoundException: If the notification does not exist or is not the user's
        """
        current = await self._get_owned(notification_id, user_id)

        await self.db.execute(delete(notifications).where(notifications.c.id == notification_id))
        await self.db.commit()

        await self._publish([ChangeEvent.delete("notifications", current)])

    async def _publish(self, events: list[ChangeEvent]) -> None:
        if self.feed is not None:
            await self.feed.publish(events)
