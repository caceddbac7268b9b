"""Client-side notification list with an exact unread counter."""

from types import TracebackType
from typing import Any, Protocol

import structlog

from app.realtime.events import ChangeEvent, ChangeType
from app.realtime.subscriptions import SubscriptionHandle, SubscriptionManager

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 50


class NotificationSource(Protocol):
    """Server operations the cache relies on."""

    async def list_notifications(self, limit: int = DEFAULT_LIMIT) -> list[dict[str, Any]]: ...

    async def mark_as_read(self, notification_id: Any) -> Any: ...

    async def mark_all_as_read(self) -> Any: ...


def _is_unread(item: dict[str, Any] | None) -> bool:
    return item is not None and not item.get("is_read", False)


class NotificationCache:
    """
    Newest-first notifications of one user, kept in sync with the change feed.

    The unread counter moves by exact deltas: an insert adds one when the row
    is unread, an update adds the difference between old and new read state,
    and a delete subtracts one only when the removed entry was unread.
    """

    def __init__(
        self,
        source: NotificationSource,
        manager: SubscriptionManager,
        user_id: Any,
        limit: int = DEFAULT_LIMIT,
    ):
        """Initialize an empty cache; call ``start`` to subscribe and load."""
        self._source = source
        self._manager = manager
        self.user_id = str(user_id)
        self.limit = limit
        self.items: list[dict[str, Any]] = []
        self.unread_count = 0
        self.is_stale = False
        self._handle: SubscriptionHandle | None = None

    async def start(self) -> "NotificationCache":
        """Subscribe to the user's notifications and load the first page."""
        if self._handle is None:
            self._handle = self._manager.subscribe(
                "notifications",
                self.apply,
                column="user_id",
                value=self.user_id,
                on_stale=self._on_stale,
            )
        await self.load()
        return self

    async def load(self) -> None:
        """Replace the cache with a fresh fetch; clears ``is_stale``."""
        items = await self._source.list_notifications(limit=self.limit)
        self.items = [dict(item) for item in items]
        self.unread_count = sum(1 for item in self.items if _is_unread(item))
        self.is_stale = False

    def _index_of(self, notification_id: Any) -> int | None:
        key = str(notification_id)
        for index, item in enumerate(self.items):
            if str(item.get("id")) == key:
                return index
        return None

    def apply(self, event: ChangeEvent) -> None:
        """Fold one realtime event into the cache."""
        if event.event_type is ChangeType.INSERT and event.new is not None:
            if self._index_of(event.new.get("id")) is not None:
                return
            self.items.insert(0, dict(event.new))
            if _is_unread(event.new):
                self.unread_count += 1

        elif event.event_type is ChangeType.UPDATE and event.new is not None:
            index = self._index_of(event.new.get("id"))
            if index is None:
                return
            previous = self.items[index]
            self.items[index] = dict(event.new)
            self.unread_count += int(_is_unread(event.new)) - int(_is_unread(previous))

        elif event.event_type is ChangeType.DELETE and event.old is not None:
            index = self._index_of(event.old.get("id"))
            if index is None:
                return
            removed = self.items.pop(index)
            if _is_unread(removed):
                self.unread_count -= 1

        self.unread_count = max(self.unread_count, 0)

    async def mark_as_read(self, notification_id: Any) -> None:
        """Mark one notification read on the server, then locally."""
        await self._source.mark_as_read(notification_id)

        index = self._index_of(notification_id)
        if index is not None and _is_unread(self.items[index]):
            self.items[index] = {**self.items[index], "is_read": True}
            self.unread_count = max(self.unread_count - 1, 0)

    async def mark_all_as_read(self) -> None:
        """Mark everything read on the server, then locally."""
        await self._source.mark_all_as_read()
        self.items = [{**item, "is_read": True} for item in self.items]
        self.unread_count = 0

    def _on_stale(self) -> None:
        self.is_stale = True
        logger.info("notification_cache_stale", user_id=self.user_id)

    def close(self) -> None:
        """Release the subscription."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    async def __aenter__(self) -> "NotificationCache":
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
