"""Payment session orchestration across providers."""
from __future__ import annotations

from typing import Mapping

import httpx

from app.config import Settings
from app.models.payment_session import Provider
from app.schemas.payment import PaymentRequest
from app.services.psp_base import ProviderAdapter, build_http_client
from app.services.psp_coinbase import CoinbaseAdapter
from app.services.psp_paypal import PayPalAdapter, PayPalAuth
from app.services.psp_signatures import SignatureVerifier, build_verifiers
from app.services.psp_stablelink import StableLinkAdapter
from app.services.psp_stripe import StripeAdapter
from app.services.session_store import PaymentSession, SessionStore


class PaymentGateway:
    """Routes session creation to the adapter registered for a provider."""

    def __init__(
        self,
        adapters: Mapping[Provider, ProviderAdapter],
        verifiers: Mapping[Provider, SignatureVerifier],
        store: SessionStore,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.adapters = dict(adapters)
        self.verifiers = dict(verifiers)
        self.store = store
        self._http_client = http_client

    def adapter(self, provider: Provider) -> ProviderAdapter:
        return self.adapters[provider]

    def create_session(self, provider: Provider, request: PaymentRequest) -> PaymentSession:
        return self.adapter(provider).create_session(request)

    def get_session(self, session_id: str) -> PaymentSession | None:
        return self.store.get(session_id)

    def provider_catalog(self) -> list[dict[str, object]]:
        return [
            {
                "id": provider,
                "name": provider.display_name,
                "available": adapter.is_configured(),
                "currencies": list(adapter.currencies),
            }
            for provider, adapter in self.adapters.items()
        ]

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()


def build_gateway(
    settings: Settings, store: SessionStore, http_client: httpx.Client | None = None
) -> PaymentGateway:
    """Wire every provider adapter and verifier around one HTTP client."""

    owns_client = http_client is None
    client = http_client or build_http_client(settings)
    paypal_auth = PayPalAuth(settings, client)
    adapters: dict[Provider, ProviderAdapter] = {
        Provider.CARD: StripeAdapter(settings, store, client),
        Provider.WALLET: PayPalAdapter(settings, store, client, paypal_auth),
        Provider.CRYPTO_FIAT: StableLinkAdapter(settings, store, client),
        Provider.CRYPTO_NATIVE: CoinbaseAdapter(settings, store, client),
    }
    verifiers = build_verifiers(settings, client, paypal_auth)
    return PaymentGateway(adapters, verifiers, store, http_client=client if owns_client else None)


__all__ = ["PaymentGateway", "build_gateway"]
