"""Shared behaviour for provider adapters.

Each adapter turns a :class:`PaymentRequest` into one provider-specific call.
The base class owns the parts every provider shares: the credential check,
the degraded fallback when the provider cannot be reached, and registering
the resulting session in the store.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar, Mapping

import httpx

from app.config import Settings
from app.core.logging import get_logger
from app.models.payment_session import Provider
from app.schemas.payment import PaymentRequest
from app.services.session_store import PaymentSession, SessionStore, generate_session_id
from app.utils.currency import minor_unit_exponent, quantize_amount
from app.utils.errors import ConfigurationError, ProviderUnavailableError
from app.utils.masking import mask_email

logger = get_logger(__name__)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a decimal amount to the currency's smallest unit (pence, yen, fils)."""

    exponent = minor_unit_exponent(currency)
    normalized = quantize_amount(amount, currency)
    return int(normalized.scaleb(exponent).to_integral_value(rounding=ROUND_HALF_UP))


def format_amount(amount: Decimal, currency: str) -> str:
    return str(quantize_amount(amount, currency))


def default_description(request: PaymentRequest) -> str:
    return request.description or f"Order {request.order_id}"


@dataclass
class ProviderCheckout:
    """What a provider handed back for a newly created checkout."""

    provider_id: str | None
    checkout_url: str | None
    metadata: dict[str, str] = field(default_factory=dict)


def build_http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(timeout=httpx.Timeout(settings.PROVIDER_TIMEOUT_SECONDS))


class ProviderAdapter:
    """Base class for the four provider adapters."""

    provider: ClassVar[Provider]
    hosted_checkout_url: ClassVar[str]
    currencies: ClassVar[tuple[str, ...]] = ("GBP", "USD", "EUR")

    def __init__(self, settings: Settings, store: SessionStore, http_client: httpx.Client) -> None:
        self.settings = settings
        self.store = store
        self.http = http_client

    def is_configured(self) -> bool:
        raise NotImplementedError

    def _create_checkout(self, request: PaymentRequest, local_id: str) -> ProviderCheckout:
        """Call the provider; raise ProviderUnavailableError on any failure."""

        raise NotImplementedError

    def _ensure_configured(self) -> None:
        if not self.is_configured():
            logger.error(
                "Payment provider credentials are missing",
                extra={"provider": self.provider.value},
            )
            raise ConfigurationError(
                f"{self.provider.display_name} is not configured.", provider=self.provider.value
            )

    def checkout_url_for(self, session_id: str) -> str:
        return self.hosted_checkout_url.format(id=session_id)

    def create_session(self, request: PaymentRequest) -> PaymentSession:
        """Create a checkout with the provider and register it in the store."""

        self._ensure_configured()
        local_id = generate_session_id(self.provider)
        try:
            checkout = self._create_checkout(request, local_id)
        except ProviderUnavailableError as exc:
            if not self.settings.fallback_enabled:
                logger.error(
                    "Provider unavailable and fallback disabled",
                    extra={"provider": self.provider.value, "order_id": request.order_id, "cause": exc.message},
                )
                raise
            logger.warning(
                "Provider unavailable; issuing degraded session",
                extra={"provider": self.provider.value, "order_id": request.order_id, "cause": exc.message},
            )
            session = self._new_session(
                request, session_id=local_id, checkout_url=self.checkout_url_for(local_id), degraded=True
            )
        else:
            session_id = checkout.provider_id or local_id
            metadata = {**checkout.metadata, "local_session_id": local_id}
            session = self._new_session(
                request,
                session_id=session_id,
                checkout_url=checkout.checkout_url or self.checkout_url_for(session_id),
                metadata=metadata,
            )

        self.store.put(session)
        logger.info(
            "Payment session created",
            extra={
                "provider": self.provider.value,
                "session_id": session.id,
                "order_id": session.order_id,
                "degraded": session.degraded,
                "customer_email": mask_email(request.customer_email),
            },
        )
        return session

    def _new_session(
        self,
        request: PaymentRequest,
        *,
        session_id: str,
        checkout_url: str,
        metadata: dict[str, str] | None = None,
        degraded: bool = False,
    ) -> PaymentSession:
        return PaymentSession(
            id=session_id,
            provider=self.provider,
            order_id=request.order_id,
            amount=request.amount,
            currency=request.currency,
            checkout_url=checkout_url,
            provider_metadata=metadata or {},
            degraded=degraded,
        )

    def _post(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        data: Any = None,
        auth: tuple[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST to the provider and return the decoded JSON object."""

        try:
            response = self.http.post(url, headers=headers, json=json, data=data, auth=auth)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                f"{self.provider.display_name} answered HTTP {exc.response.status_code}",
                provider=self.provider.value,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                f"{self.provider.display_name} request failed: {exc.__class__.__name__}",
                provider=self.provider.value,
            ) from exc
        except ValueError as exc:
            raise ProviderUnavailableError(
                f"{self.provider.display_name} returned a non-JSON body", provider=self.provider.value
            ) from exc
        if not isinstance(body, dict):
            raise ProviderUnavailableError(
                f"{self.provider.display_name} returned an unexpected payload", provider=self.provider.value
            )
        return body


__all__ = [
    "ProviderAdapter",
    "ProviderCheckout",
    "build_http_client",
    "default_description",
    "format_amount",
    "to_minor_units",
]
