"""Native crypto payments through Coinbase Commerce charges."""
from __future__ import annotations

from app.models.payment_session import Provider
from app.schemas.payment import PaymentRequest
from app.services.psp_base import ProviderAdapter, ProviderCheckout, default_description, format_amount
from app.utils.errors import ProviderUnavailableError

COINBASE_API_VERSION = "2018-03-22"


class CoinbaseAdapter(ProviderAdapter):
    provider = Provider.CRYPTO_NATIVE
    hosted_checkout_url = "https://commerce.coinbase.com/checkout/{id}"
    currencies = ("BTC", "ETH", "USDC")

    def is_configured(self) -> bool:
        return bool(self.settings.COINBASE_API_KEY)

    def _create_checkout(self, request: PaymentRequest, local_id: str) -> ProviderCheckout:
        body = {
            "name": default_description(request),
            "description": f"Payment for order {request.order_id}",
            "pricing_type": "fixed_price",
            "local_price": {
                "amount": format_amount(request.amount, request.currency),
                "currency": request.currency.upper(),
            },
            "metadata": {"order_id": request.order_id, "session_id": local_id},
            "redirect_url": str(request.return_url),
            "cancel_url": str(request.cancel_url),
        }
        response = self._post(
            f"{self.settings.COINBASE_API_URL.rstrip('/')}/charges",
            headers={
                "X-CC-Api-Key": self.settings.COINBASE_API_KEY or "",
                "X-CC-Version": COINBASE_API_VERSION,
            },
            json=body,
        )
        charge = response.get("data")
        if not isinstance(charge, dict):
            raise ProviderUnavailableError("Coinbase response has no charge", provider=self.provider.value)

        metadata: dict[str, str] = {}
        if charge.get("id"):
            metadata["coinbase_charge_id"] = charge["id"]
        if charge.get("code"):
            metadata["coinbase_charge_code"] = charge["code"]
        return ProviderCheckout(
            provider_id=charge.get("id"),
            checkout_url=charge.get("hosted_url"),
            metadata=metadata,
        )


__all__ = ["CoinbaseAdapter", "COINBASE_API_VERSION"]
