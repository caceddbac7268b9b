"""
Background sweep for abandoned payments.

A payment the gateway never reports on would hold its appointment slot
forever. Every few minutes, payments pending longer than the configured TTL
are failed and their appointment or session cancelled.
"""

from datetime import timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.core.redis_client import get_async_redis_client
from app.database import AsyncSessionLocal
from app.models.base import utc_now
from app.realtime.feed import ChangeFeed
from app.services.payment_reconciler import PaymentReconciler

logger = structlog.get_logger(__name__)

JOB_ID = "payment_expiry_sweep"

# Global singleton instance
_payment_expiry_scheduler: "PaymentExpiryScheduler | None" = None


async def expire_pending_payments(
    session_factory=AsyncSessionLocal,
    feed: ChangeFeed | None = None,
) -> int:
    """
    Run one sweep with a fresh database session.

    Returns:
        Number of payments expired
    """
    cutoff = utc_now() - timedelta(minutes=settings.payment_pending_ttl_minutes)
    if feed is None:
        feed = ChangeFeed(get_async_redis_client())

    async with session_factory() as db:
        reconciler = PaymentReconciler(db, feed)
        return await reconciler.expire_stale_payments(cutoff)


class PaymentExpiryScheduler:
    """Runs ``expire_pending_payments`` on an interval."""

    def __init__(self):
        """Initialize the scheduler; nothing runs until ``start``."""
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._is_started = False

    @property
    def is_started(self) -> bool:
        return self._is_started

    async def start(self) -> None:
        """Start the interval job. Call during application startup."""
        if self._is_started:
            logger.warning("payment_expiry_scheduler_already_started")
            return

        self.scheduler.add_job(
            self._run_sweep,
            IntervalTrigger(minutes=settings.payment_sweep_interval_minutes),
            id=JOB_ID,
            name="Expire abandoned payments",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._is_started = True
        logger.info(
            "payment_expiry_scheduler_started",
            interval_minutes=settings.payment_sweep_interval_minutes,
            ttl_minutes=settings.payment_pending_ttl_minutes,
        )

    async def stop(self) -> None:
        """Stop the scheduler. Call during application shutdown."""
        if self._is_started:
            self.scheduler.shutdown(wait=False)
            self._is_started = False
            logger.info("payment_expiry_scheduler_stopped")

    async def _run_sweep(self) -> None:
        try:
            await expire_pending_payments()
        except Exception:
            # Keep the job scheduled; the next run retries
            logger.exception("payment_expiry_sweep_failed")


def get_payment_expiry_scheduler() -> PaymentExpiryScheduler:
    """Get the global payment expiry scheduler instance."""
    global _payment_expiry_scheduler

    if _payment_expiry_scheduler is None:
        _payment_expiry_scheduler = PaymentExpiryScheduler()

    return _payment_expiry_scheduler
