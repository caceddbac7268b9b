"""Teleconsultation access-code verification."""

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import PersistenceException, RateLimitException
from app.core.redis_client import RateLimiter
from app.models.base import utc_now
from app.models.teleconsultation_sessions import teleconsultation_sessions
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed
from app.schemas.teleconsultations import (
    LIVE_SESSION_STATUSES,
    AccessCodeVerifyResponse,
    SessionData,
    SessionStatus,
)
from app.services.teleconsultation_service import ACCESS_CODE_ALPHABET, ACCESS_CODE_LENGTH

logger = structlog.get_logger(__name__)

INVALID_CODE_MESSAGE = "This code is invalid or expired"
UNPAID_CODE_MESSAGE = "Payment not confirmed"


def normalize_access_code(code: str) -> str | None:
    """Canonical form of a typed code, or None when it cannot be a code."""
    cleaned = code.strip().upper()
    if len(cleaned) != ACCESS_CODE_LENGTH:
        return None
    if any(char not in ACCESS_CODE_ALPHABET for char in cleaned):
        return None
    return cleaned


class AccessCodeService:
    """Service for joining a session by access code."""

    def __init__(
        self,
        db: AsyncSession,
        feed: ChangeFeed | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        """Initialize service with database session, change feed and rate limiter."""
        self.db = db
        self.feed = feed
        self.rate_limiter = rate_limiter

    def _check_rate_limit(self, client_key: str) -> None:
        if self.rate_limiter is None:
            return
        allowed = self.rate_limiter.check_rate_limit(
            f"access_code:{client_key}",
            limit=settings.access_code_attempts_per_minute,
            window=60,
        )
        if not allowed:
            logger.warning("access_code_rate_limited", client=client_key)
            raise RateLimitException("Too many attempts, please wait a minute")

    async def verify(self, code: str, client_key: str) -> AccessCodeVerifyResponse:
        """
        Verify an access code and open the session on first use.

        Unknown, finished and cancelled codes get the same answer.

        Args:
            code: Code as typed by the user
            client_key: Rate limit key for the caller (e.g., client IP)

        Returns:
            Verdict, with the channel to join when valid

        Raises:
            RateLimitException: If the caller tried too many codes
            PersistenceException: If the session could not be updated
        """
        self._check_rate_limit(client_key)

        normalized = normalize_access_code(code)
        if normalized is None:
            return AccessCodeVerifyResponse(valid=False, message=INVALID_CODE_MESSAGE)

        result = await self.db.execute(
            select(teleconsultation_sessions)
            .where(teleconsultation_sessions.c.access_code == normalized)
            .order_by(
                case(
                    (teleconsultation_sessions.c.status.in_(LIVE_SESSION_STATUSES), 0),
                    else_=1,
                ),
                teleconsultation_sessions.c.created_at.desc(),
            )
            .limit(1)
        )
        session = result.mappings().first()

        if session is None:
            logger.info("access_code_unknown")
            return AccessCodeVerifyResponse(valid=False, message=INVALID_CODE_MESSAGE)

        status = SessionStatus(session["status"])

        if status is SessionStatus.PENDING:
            return AccessCodeVerifyResponse(valid=False, message=UNPAID_CODE_MESSAGE)

        if status is SessionStatus.PAID:
            session = await self._activate(dict(session))
            if session is None:
                return AccessCodeVerifyResponse(valid=False, message=INVALID_CODE_MESSAGE)
        elif status is not SessionStatus.ACTIVE:
            logger.info(
                "access_code_terminal",
                session_id=str(session["id"]),
                status=status.value,
            )
            return AccessCodeVerifyResponse(valid=False, message=INVALID_CODE_MESSAGE)

        return AccessCodeVerifyResponse(
            valid=True,
            session_data=SessionData(
                channel_name=session["channel_name"],
                doctor_id=session["doctor_id"],
                duration=session["duration_minutes"],
            ),
        )

    async def _activate(self, session: dict) -> dict | None:
        """
        Move a paid session to active.

        Returns the session as it stands afterwards, or None when it is no
        longer joinable.
        """
        now = utc_now()
        try:
            result = await self.db.execute(
                update(teleconsultation_sessions)
                .where(
                    teleconsultation_sessions.c.id == session["id"],
                    teleconsultation_sessions.c.status == SessionStatus.PAID.value,
                )
                .values(status=SessionStatus.ACTIVE.value, started_at=now, updated_at=now)
                .returning(teleconsultation_sessions)
            )
            row = result.mappings().first()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "session_activation_failed",
                session_id=str(session["id"]),
                error=str(e),
            )
            raise PersistenceException() from e

        if row is not None:
            activated = dict(row)
            logger.info("teleconsultation_session_started", session_id=str(session["id"]))
            if self.feed is not None:
                await self.feed.publish(
                    [ChangeEvent.update("teleconsultation_sessions", activated, old=session)]
                )
            return activated

        # Someone else activated or closed it first
        result = await self.db.execute(
            select(teleconsultation_sessions).where(
                teleconsultation_sessions.c.id == session["id"]
            )
        )
        current = result.mappings().first()
        if current is not None and current["status"] == SessionStatus.ACTIVE.value:
            return dict(current)
        return None
