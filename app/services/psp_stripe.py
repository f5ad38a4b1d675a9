"""Card payments through Stripe Checkout Sessions."""
from __future__ import annotations

from typing import Any, Dict

import httpx
import stripe

from app.config import Settings
from app.models.payment_session import Provider
from app.schemas.payment import PaymentRequest
from app.services.psp_base import ProviderAdapter, ProviderCheckout, default_description, to_minor_units
from app.services.session_store import SessionStore
from app.utils.errors import ProviderUnavailableError


class StripeAdapter(ProviderAdapter):
    """Opens one-line-item Stripe Checkout Sessions for card payments.

    The local session id travels in the session metadata and doubles as the
    idempotency key, so webhooks can be correlated even when Stripe names the
    session differently.
    """

    provider = Provider.CARD
    hosted_checkout_url = "https://checkout.stripe.com/pay/{id}"

    def __init__(self, settings: Settings, store: SessionStore, http_client: httpx.Client) -> None:
        super().__init__(settings, store, http_client)
        # The SDK has no per-call timeout, only its process-wide HTTP client.
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)

    def is_configured(self) -> bool:
        return bool(self.settings.STRIPE_SECRET_KEY)

    def checkout_params(self, request: PaymentRequest, local_id: str) -> Dict[str, Any]:
        """Build the Checkout Session parameters; the SDK form-encodes them."""

        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "success_url": str(request.return_url),
            "cancel_url": str(request.cancel_url),
            "line_items": [
                {
                    "price_data": {
                        "currency": request.currency.lower(),
                        "product_data": {"name": default_description(request)},
                        "unit_amount": to_minor_units(request.amount, request.currency),
                    },
                    "quantity": 1,
                }
            ],
            "metadata": {"order_id": request.order_id, "session_id": local_id},
        }
        if request.customer_email:
            params["customer_email"] = request.customer_email
        return params

    def _create_checkout(self, request: PaymentRequest, local_id: str) -> ProviderCheckout:
        try:
            checkout = stripe.checkout.Session.create(
                api_key=self.settings.STRIPE_SECRET_KEY,
                idempotency_key=local_id,
                **self.checkout_params(request, local_id),
            )
        except stripe.StripeError as exc:
            raise ProviderUnavailableError(
                f"Stripe session creation failed: {exc.__class__.__name__}", provider=self.provider.value
            ) from exc

        checkout_id = getattr(checkout, "id", None)
        if not checkout_id:
            raise ProviderUnavailableError("Stripe returned a session without id", provider=self.provider.value)
        return ProviderCheckout(
            provider_id=checkout_id,
            checkout_url=getattr(checkout, "url", None),
            metadata={"stripe_session_id": checkout_id},
        )


__all__ = ["StripeAdapter"]
