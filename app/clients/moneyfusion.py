"""
MoneyFusion gateway helpers.

Checkout is a hosted page: the merchant URL is opened with the order
fields in the query string (or posted as a form). The gateway echoes
``personal_Info`` back in its webhook and exposes a status endpoint keyed
by the payment token.
"""

import json
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from app.config import settings
from app.core.exceptions import ConfigurationException, GatewayException

logger = structlog.get_logger(__name__)


def gateway_urls() -> tuple[str, str]:
    """
    Resolve the merchant URL and the webhook URL.

    Returns:
        Tuple of (gateway_url, webhook_url)

    Raises:
        ConfigurationException: If the gateway or public API URL is missing
    """
    if not settings.moneyfusion_api_url or not settings.public_api_url:
        logger.error(
            "moneyfusion_not_configured",
            has_api_url=bool(settings.moneyfusion_api_url),
            has_public_api_url=bool(settings.public_api_url),
        )
        raise ConfigurationException()

    webhook_url = (
        f"{settings.public_api_url.rstrip('/')}{settings.api_v1_prefix}/payments/webhook"
    )
    return settings.moneyfusion_api_url, webhook_url


def build_payment_form(
    *,
    amount: int,
    article: str,
    customer_phone: str,
    customer_name: str,
    correlation: dict[str, Any],
    return_url: str,
    webhook_url: str,
) -> dict[str, str]:
    """
    Build the checkout fields.

    ``personal_Info`` is a JSON array holding one object, the shape the
    gateway echoes back unchanged.
    """
    return {
        "totalPrice": str(amount),
        "article": article,
        "numeroSend": customer_phone,
        "nomclient": customer_name,
        "personal_Info": json.dumps([{k: str(v) for k, v in correlation.items()}]),
        "return_url": return_url,
        "webhook_url": webhook_url,
    }


def build_payment_url(gateway_url: str, form: dict[str, str]) -> str:
    """Append the checkout fields to the merchant URL as a query string."""
    separator = "&" if "?" in gateway_url else "?"
    return f"{gateway_url}{separator}{urlencode(form)}"


def build_return_url(payment_id: Any) -> str:
    """Return page URL carrying the payment id."""
    separator = "&" if "?" in settings.payment_return_url else "?"
    return f"{settings.payment_return_url}{separator}{urlencode({'paymentId': str(payment_id)})}"


class MoneyFusionClient:
    """Async client for the MoneyFusion status endpoint."""

    def __init__(
        self,
        status_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client with settings."""
        self.status_url = (status_url or settings.moneyfusion_status_url).rstrip("/")
        self.timeout = timeout or settings.moneyfusion_timeout
        self._transport = transport

    async def fetch_status(self, token: str) -> dict[str, Any]:
        """
        Query the gateway for the state of a payment.

        Args:
            token: Gateway payment token (``tokenPay``)

        Returns:
            The ``data`` object of the gateway answer

        Raises:
            GatewayException: On network errors or an unusable answer
        """
        url = f"{self.status_url}/{token}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            logger.warning("moneyfusion_status_failed", token=token, error=str(e))
            raise GatewayException() from e
        except ValueError as e:
            logger.warning("moneyfusion_status_not_json", token=token)
            raise GatewayException() from e

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            logger.warning("moneyfusion_status_unexpected", token=token)
            raise GatewayException("Payment gateway returned an unexpected answer")

        data.setdefault("tokenPay", token)
        return data
