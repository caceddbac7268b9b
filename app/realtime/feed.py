"""Publisher side of the realtime change feed."""

from collections.abc import Iterable

import redis
import redis.asyncio as aioredis
import structlog

from app.config import settings
from app.realtime.events import ChangeEvent
from app.realtime.subscriptions import SubscriptionManager

logger = structlog.get_logger(__name__)


class ChangeFeed:
    """
    Publish committed row changes.

    With Redis, events go to ``<prefix>:<table>`` and reach every process
    through ``SubscriptionManager.listen``. Without Redis they are dispatched
    directly to a local manager.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        manager: SubscriptionManager | None = None,
        channel_prefix: str | None = None,
    ):
        """Initialize the feed with a Redis client or a local manager."""
        self.redis = redis_client
        self.manager = manager
        self.channel_prefix = channel_prefix or settings.realtime_channel_prefix

    def channel_for(self, table: str) -> str:
        """Redis channel for a table."""
        return f"{self.channel_prefix}:{table}"

    async def publish(self, events: Iterable[ChangeEvent]) -> None:
        """
        Publish events in the given order.

        Called after commit; failures are logged and never raised, since the
        change is already durable.
        """
        for event in events:
            if self.redis is not None:
                try:
                    await self.redis.publish(self.channel_for(event.table), event.to_json())
                except redis.RedisError as e:
                    logger.warning(
                        "change_event_publish_failed",
                        table=event.table,
                        event_type=event.event_type.value,
                        error=str(e),
                    )
            elif self.manager is not None:
                await self.manager.dispatch(event)
