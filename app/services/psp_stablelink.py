"""Crypto-to-fiat payments through StableLink (GBP/EUR settlement)."""
from __future__ import annotations

from app.models.payment_session import Provider
from app.schemas.payment import PaymentRequest
from app.services.psp_base import ProviderAdapter, ProviderCheckout, default_description, format_amount


class StableLinkAdapter(ProviderAdapter):
    provider = Provider.CRYPTO_FIAT
    hosted_checkout_url = "https://pay.stablelink.io/checkout/{id}"

    def is_configured(self) -> bool:
        return bool(self.settings.STABLELINK_API_KEY and self.settings.STABLELINK_API_SECRET)

    def _create_checkout(self, request: PaymentRequest, local_id: str) -> ProviderCheckout:
        body = {
            "amount": format_amount(request.amount, request.currency),
            "currency": request.currency,
            "reference": request.order_id,
            "description": default_description(request),
            "redirect_url": str(request.return_url),
            "cancel_url": str(request.cancel_url),
            "customer_email": request.customer_email,
            "metadata": {"order_id": request.order_id, "session_id": local_id},
        }
        data = self._post(
            f"{self.settings.STABLELINK_API_URL.rstrip('/')}/payments",
            headers={
                "X-API-Key": self.settings.STABLELINK_API_KEY or "",
                "X-API-Secret": self.settings.STABLELINK_API_SECRET or "",
            },
            json=body,
        )
        payment_id = data.get("payment_id")
        metadata = {"stablelink_payment_id": payment_id} if payment_id else {}
        return ProviderCheckout(
            provider_id=payment_id,
            checkout_url=data.get("checkout_url"),
            metadata=metadata,
        )


__all__ = ["StableLinkAdapter"]
