"""Subscription registry for row change events."""

import asyncio
import inspect
import itertools
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import structlog
from pydantic import ValidationError

from app.config import settings
from app.core.redis_client import create_async_redis_client
from app.realtime.events import ChangeEvent

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]
StaleCallback = Callable[[], Awaitable[None] | None]


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class SubscriptionHandle:
    """
    A live subscription.

    Closing the handle removes it from its manager; it is also a context
    manager so callers can scope it to a block.
    """

    def __init__(
        self,
        manager: "SubscriptionManager",
        handle_id: str,
        table: str,
        callback: ChangeCallback,
        column: str | None = None,
        value: str | None = None,
        on_stale: StaleCallback | None = None,
    ):
        self._manager = manager
        self.id = handle_id
        self.table = table
        self.callback = callback
        self.column = column
        self.value = value
        self.on_stale = on_stale
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        """Whether this subscription wants ``event``."""
        if self.closed or event.table != self.table:
            return False
        return event.matches(self.column, self.value)

    def close(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self.closed:
            self.closed = True
            self._manager.unsubscribe(self)

    def __enter__(self) -> "SubscriptionHandle":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SubscriptionHandle(id={self.id!r}, closed={self.closed})"


class SubscriptionManager:
    """
    Registry of subscriptions, fed by the change feed.

    Events are delivered to matching handles in the order they are
    dispatched, which is commit order for a single publisher.
    """

    def __init__(self, channel_prefix: str | None = None):
        """Initialize an empty registry."""
        self.channel_prefix = channel_prefix or settings.realtime_channel_prefix
        self._handles: dict[str, SubscriptionHandle] = {}
        self._sequence = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        column: str | None = None,
        value: Any = None,
        on_stale: StaleCallback | None = None,
    ) -> SubscriptionHandle:
        """
        Register a callback for changes on ``table``.

        Args:
            table: Table name
            callback: Called with each matching ChangeEvent (sync or async)
            column: Optional column for an equality filter
            value: Value the column must equal
            on_stale: Called when the feed connection drops

        Returns:
            Handle that ends the subscription when closed
        """
        if column is not None and value is None:
            raise ValueError("A filter column needs a value")

        filter_part = f"{column}={value}" if column is not None else "*"
        handle_id = f"{table}:{filter_part}#{next(self._sequence)}"
        handle = SubscriptionHandle(
            self,
            handle_id,
            table,
            callback,
            column=column,
            value=str(value) if value is not None else None,
            on_stale=on_stale,
        )
        self._handles[handle_id] = handle
        logger.debug("subscription_opened", subscription_id=handle_id)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove a handle from the registry."""
        if self._handles.pop(handle.id, None) is not None:
            handle.closed = True
            logger.debug("subscription_closed", subscription_id=handle.id)

    @property
    def active(self) -> list[SubscriptionHandle]:
        """Currently open handles, oldest first."""
        return list(self._handles.values())

    async def dispatch(self, event: ChangeEvent) -> int:
        """
        Deliver one event to every matching subscription.

        A failing callback is logged and does not stop delivery to the others.

        Returns:
            Number of callbacks invoked
        """
        delivered = 0
        for handle in self.active:
            if not handle.matches(event):
                continue
            delivered += 1
            try:
                await _call(handle.callback, event)
            except Exception:
                logger.exception(
                    "subscription_callback_failed",
                    subscription_id=handle.id,
                    table=event.table,
                )
        return delivered

    async def mark_stale(self) -> None:
        """Tell every subscriber that events may have been missed."""
        for handle in self.active:
            if handle.on_stale is None:
                continue
            try:
                await _call(handle.on_stale)
            except Exception:
                logger.exception("subscription_stale_callback_failed", subscription_id=handle.id)

    async def listen(
        self,
        client_factory: Callable[[], Any] = create_async_redis_client,
        max_backoff: float = 30.0,
    ) -> None:
        """
        Consume the Redis change feed until cancelled.

        Reconnects with exponential backoff; every drop marks subscribers stale.
        """
        pattern = f"{self.channel_prefix}:*"
        backoff = 1.0

        while True:
            client = client_factory()
            pubsub = client.pubsub()
            try:
                await pubsub.psubscribe(pattern)
                logger.info("change_feed_listening", pattern=pattern)
                backoff = 1.0

                async for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    try:
                        event = ChangeEvent.from_json(message["data"])
                    except ValidationError as e:
                        logger.warning("change_event_invalid", error=str(e))
                        continue
                    await self.dispatch(event)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("change_feed_connection_lost", error=str(e), retry_in=backoff)
                await self.mark_stale()
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, max_backoff)
            finally:
                await pubsub.aclose()
                await client.aclose()


# Global manager instance
_subscription_manager: SubscriptionManager | None = None


def get_subscription_manager() -> SubscriptionManager:
    """Get or create the process-wide subscription manager."""
    global _subscription_manager

    if _subscription_manager is None:
        _subscription_manager = SubscriptionManager()

    return _subscription_manager
