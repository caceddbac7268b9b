"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.moneyfusion import MoneyFusionClient
from app.config import settings
from app.core.exceptions import (
    ConfigurationException,
    ForbiddenException,
    UnauthorizedException,
)
from app.core.redis_client import RateLimiter, get_async_redis_client, get_redis_client
from app.core.security import decode_access_token, verify_webhook_signature
from app.database import get_db
from app.realtime.feed import ChangeFeed
from app.services.user_service import UserService

logger = structlog.get_logger(__name__)

WEBHOOK_SIGNATURE_HEADER = "X-Webhook-Signature"

# Security
security = HTTPBearer()


def user_id_from_token(token: str) -> UUID | None:
    """Subject of a valid access token, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        return None

    try:
        return UUID(user_id_str)
    except ValueError:
        return None


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    user_id = user_id_from_token(credentials.credentials)

    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user from database.

    Args:
        user_id: User ID from JWT token
        db: Database session

    Returns:
        User data from database

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService.get_user_by_id(db, user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def get_staff_user(
    user: Annotated[dict, Depends(get_current_user)],
) -> dict:
    """Current user, required to be clinic staff."""
    if not UserService.is_staff(user):
        raise ForbiddenException("Clinic staff only")
    return user


def get_change_feed() -> ChangeFeed:
    """Change feed publishing to Redis."""
    return ChangeFeed(get_async_redis_client())


def get_rate_limiter() -> RateLimiter:
    """Redis-backed rate limiter."""
    return RateLimiter(get_redis_client())


def get_moneyfusion_client() -> MoneyFusionClient:
    """MoneyFusion status client."""
    return MoneyFusionClient()


def client_key(request: Request) -> str:
    """
    Network address of the caller.

    Forwarded headers are not read here: uvicorn's proxy-headers handling
    rewrites ``request.client`` only for peers in ``FORWARDED_ALLOW_IPS``.
    """
    return request.client.host if request.client else "unknown"


async def get_verified_webhook_body(request: Request) -> bytes:
    """
    Raw webhook body, after checking where it came from and its signature.

    Raises:
        ForbiddenException: If the source IP is not allowed
        UnauthorizedException: If the signature is missing or wrong
        ConfigurationException: If no secret is set in production
    """
    body = await request.body()

    allowed_ips = settings.moneyfusion_allowed_ips
    if allowed_ips:
        source = client_key(request)
        if source not in allowed_ips:
            logger.warning("webhook_source_rejected", source=source)
            raise ForbiddenException("Webhook source not allowed")

    secret = settings.moneyfusion_webhook_secret
    if not secret:
        if settings.is_production:
            logger.error("webhook_secret_missing")
            raise ConfigurationException("Webhook verification is not configured")
        logger.warning("webhook_signature_unchecked")
        return body

    if not verify_webhook_signature(body, request.headers.get(WEBHOOK_SIGNATURE_HEADER), secret):
        logger.warning("webhook_signature_invalid")
        raise UnauthorizedException("Invalid webhook signature")

    return body


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
StaffUser = Annotated[dict, Depends(get_staff_user)]
Feed = Annotated[ChangeFeed, Depends(get_change_feed)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
MoneyFusion = Annotated[MoneyFusionClient, Depends(get_moneyfusion_client)]
WebhookBody = Annotated[bytes, Depends(get_verified_webhook_body)]
