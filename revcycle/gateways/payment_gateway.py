"""
Payment Gateway Client.

Thin client for a Razorpay-style checkout gateway:
- Demo: orders minted locally, no network calls
- Live: orders and payment lookups over the gateway REST API

Signature checks are always local: the gateway signs
``"{order_id}|{payment_id}"`` with the key secret (HMAC-SHA256, hex).
"""

import hashlib
import hmac
import logging
from typing import Any, Optional
from uuid import uuid4

import httpx

from revcycle.core.config import EngineSettings, get_engine_settings
from revcycle.core.enums import GatewayMode
from revcycle.gateways.base import (
    GatewayError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)


def sign(order_id: str, payment_id: str, secret: str) -> str:
    """Signature the gateway attaches to a successful checkout."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Constant-time comparison against the expected signature."""
    if not signature:
        return False
    expected = sign(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


class PaymentGatewayClient:
    """Order creation and payment lookup against the checkout gateway."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or get_engine_settings()
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def mode(self) -> GatewayMode:
        return self._settings.PAYMENT_GATEWAY_MODE

    @property
    def key_id(self) -> str:
        return self._settings.PAYMENT_GATEWAY_KEY_ID

    def is_demo_mode(self) -> bool:
        return self.mode == GatewayMode.DEMO

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._settings.PAYMENT_GATEWAY_BASE_URL,
                auth=(
                    self._settings.PAYMENT_GATEWAY_KEY_ID,
                    self._settings.PAYMENT_GATEWAY_KEY_SECRET,
                ),
                timeout=self._settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
            )
        return self._http_client

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_signature(
            order_id, payment_id, signature, self._settings.PAYMENT_GATEWAY_KEY_SECRET
        )

    def sign(self, order_id: str, payment_id: str) -> str:
        """Produce a checkout signature. Demo checkouts and tests use this."""
        return sign(order_id, payment_id, self._settings.PAYMENT_GATEWAY_KEY_SECRET)

    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: Optional[str] = None,
        notes: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Open an order for ``amount_minor`` units of ``currency``."""
        if self.is_demo_mode():
            order = {
                "id": f"order_{uuid4().hex[:14]}",
                "amount": amount_minor,
                "currency": currency,
                "receipt": receipt,
                "status": "created",
            }
            logger.info(f"Demo order {order['id']} created for {amount_minor} {currency}")
            return order

        payload: dict[str, Any] = {"amount": amount_minor, "currency": currency}
        if receipt:
            payload["receipt"] = receipt
        if notes:
            payload["notes"] = notes
        return await self._request("POST", "/orders", json=payload)

    async def fetch_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        """Look up a captured payment. Demo mode has nothing to look up."""
        if self.is_demo_mode():
            return None
        return await self._request("GET", f"/payments/{payment_id}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Gateway {method} {path} timed out", provider="gateway", original_error=e
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Gateway unreachable: {e}", provider="gateway", original_error=e
            )

        if response.status_code >= 400:
            raise GatewayError(
                f"Gateway {method} {path} returned {response.status_code}",
                provider="gateway",
            )
        return response.json()

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
