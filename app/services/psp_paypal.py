"""Wallet payments through the PayPal Orders v2 API."""
from __future__ import annotations

import threading
import time
from typing import Any

import httpx

from app.config import Settings
from app.core.logging import get_logger
from app.models.payment_session import Provider
from app.schemas.payment import PaymentRequest
from app.services.psp_base import ProviderAdapter, ProviderCheckout, default_description, format_amount
from app.utils.errors import ProviderUnavailableError

logger = get_logger(__name__)

# Refresh tokens a little before PayPal expires them.
_TOKEN_EXPIRY_MARGIN_SECONDS = 60


class PayPalAuth:
    """Fetches and caches OAuth2 client-credentials tokens."""

    def __init__(self, settings: Settings, http_client: httpx.Client) -> None:
        self.settings = settings
        self.http = http_client
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return self.settings.paypal_base_url

    def has_credentials(self) -> bool:
        return bool(self.settings.PAYPAL_CLIENT_ID and self.settings.PAYPAL_CLIENT_SECRET)

    def access_token(self) -> str:
        with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token

        try:
            response = self.http.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.settings.PAYPAL_CLIENT_ID or "", self.settings.PAYPAL_CLIENT_SECRET or ""),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
            token = payload["access_token"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("PayPal authentication failed", extra={"cause": exc.__class__.__name__})
            raise ProviderUnavailableError("PayPal authentication failed", provider=Provider.WALLET.value) from exc

        expires_in = payload.get("expires_in")
        with self._lock:
            self._token = token
            if isinstance(expires_in, (int, float)) and expires_in > _TOKEN_EXPIRY_MARGIN_SECONDS:
                self._expires_at = time.monotonic() + expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS
            else:
                self._expires_at = 0.0
        return token


def _payer_action_link(order: dict[str, Any]) -> str | None:
    for link in order.get("links") or []:
        if isinstance(link, dict) and link.get("rel") == "payer-action":
            return link.get("href")
    return None


class PayPalAdapter(ProviderAdapter):
    """Creates ``intent=CAPTURE`` orders on PayPal Orders v2.

    The gateway does not capture approved orders itself. A wallet session only
    completes on ``PAYMENT.CAPTURE.COMPLETED``, so the capture has to be made
    by the merchant's PayPal setup; ``CHECKOUT.ORDER.APPROVED`` is logged as a
    warning so stuck sessions are visible.
    """

    provider = Provider.WALLET
    hosted_checkout_url = "https://www.paypal.com/checkoutnow?token={id}"

    def __init__(self, settings: Settings, store, http_client: httpx.Client, auth: PayPalAuth) -> None:
        super().__init__(settings, store, http_client)
        self.auth = auth

    def is_configured(self) -> bool:
        return self.auth.has_credentials()

    def order_body(self, request: PaymentRequest, local_id: str) -> dict[str, Any]:
        return {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.order_id,
                    "custom_id": local_id,
                    "description": default_description(request),
                    "amount": {
                        "currency_code": request.currency.upper(),
                        "value": format_amount(request.amount, request.currency),
                    },
                }
            ],
            "payment_source": {
                "paypal": {
                    "experience_context": {
                        "return_url": str(request.return_url),
                        "cancel_url": str(request.cancel_url),
                        "brand_name": self.settings.PAYPAL_BRAND_NAME,
                        "locale": "en-GB",
                        "landing_page": "LOGIN",
                        "user_action": "PAY_NOW",
                    }
                }
            },
        }

    def _create_checkout(self, request: PaymentRequest, local_id: str) -> ProviderCheckout:
        token = self.auth.access_token()
        order = self._post(
            f"{self.auth.base_url}/v2/checkout/orders",
            headers={"Authorization": f"Bearer {token}", "PayPal-Request-Id": local_id},
            json=self.order_body(request, local_id),
        )
        order_id = order.get("id")
        if not order_id:
            raise ProviderUnavailableError("PayPal returned an order without id", provider=self.provider.value)
        return ProviderCheckout(
            provider_id=order_id,
            checkout_url=_payer_action_link(order),
            metadata={"paypal_order_id": order_id},
        )


__all__ = ["PayPalAuth", "PayPalAdapter"]
