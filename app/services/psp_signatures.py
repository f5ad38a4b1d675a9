"""Webhook authenticity checks, one scheme per provider."""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import ClassVar, Mapping

import httpx
import stripe

from app.config import Settings
from app.core.logging import get_logger
from app.models.payment_session import Provider
from app.services.psp_paypal import PayPalAuth
from app.utils.errors import ProviderUnavailableError
from app.utils.masking import masked_secret_status

logger = get_logger(__name__)

STRIPE_SIGNATURE_HEADER = "Stripe-Signature"
STABLELINK_SIGNATURE_HEADER = "X-StableLink-Signature"
COINBASE_SIGNATURE_HEADER = "X-CC-Webhook-Signature"
PAYPAL_TRANSMISSION_HEADERS = {
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
    "cert_url": "PAYPAL-CERT-URL",
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
}


def _get_header(headers: Mapping[str, str], key: str) -> str | None:
    for h_key, value in headers.items():
        if h_key.lower() == key.lower():
            return value
    return None


def compute_hmac_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class SignatureVerifier:
    """Shared gate: decides what happens when no secret is configured.

    Verification is skipped only when the provider has no secret AND unsigned
    webhooks were explicitly allowed. A configured secret is always enforced.
    """

    provider: ClassVar[Provider]

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def is_configured(self) -> bool:
        raise NotImplementedError

    def secret_status(self) -> dict[str, str | None]:
        return {}

    def _verify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        raise NotImplementedError

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        if not self.is_configured():
            if self.settings.WEBHOOK_SIGNATURE_OPTIONAL:
                logger.warning(
                    "Webhook secret not configured; accepting unsigned webhook",
                    extra={"provider": self.provider.value, "env": self.settings.app_env},
                )
                return True
            logger.error(
                "Webhook secret not configured; rejecting webhook",
                extra={"provider": self.provider.value},
            )
            return False
        return self._verify(raw_body, headers)


class StripeSignatureVerifier(SignatureVerifier):
    """``Stripe-Signature: t=<ts>,v1=<hex>`` over ``"<t>.<body>"``."""

    provider = Provider.CARD

    def is_configured(self) -> bool:
        return bool(self.settings.STRIPE_WEBHOOK_SECRET)

    def secret_status(self) -> dict[str, str | None]:
        return masked_secret_status({"webhook_secret": self.settings.STRIPE_WEBHOOK_SECRET})

    def _verify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        sig_header = _get_header(headers, STRIPE_SIGNATURE_HEADER)
        if not sig_header:
            logger.warning("Stripe-Signature header missing")
            return False
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return False
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                sig_header,
                self.settings.STRIPE_WEBHOOK_SECRET,
                self.settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except (stripe.SignatureVerificationError, ValueError):
            logger.warning(
                "Stripe signature verification failed",
                extra={"psp_secret_status": self.secret_status()},
            )
            return False
        return True


class HmacSignatureVerifier(SignatureVerifier):
    """Plain hex HMAC-SHA256 of the body in a single header, no timestamp."""

    header_name: ClassVar[str]

    @property
    def secret(self) -> str | None:
        raise NotImplementedError

    def is_configured(self) -> bool:
        return bool(self.secret)

    def secret_status(self) -> dict[str, str | None]:
        return masked_secret_status({"webhook_secret": self.secret})

    def _verify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        provided = _get_header(headers, self.header_name)
        if not provided:
            logger.warning(
                "Webhook signature header missing",
                extra={"provider": self.provider.value, "header": self.header_name},
            )
            return False
        expected = compute_hmac_signature(self.secret or "", raw_body)
        if hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8")):
            return True
        logger.warning(
            "Webhook signature mismatch",
            extra={"provider": self.provider.value, "psp_secret_status": self.secret_status()},
        )
        return False


class StableLinkSignatureVerifier(HmacSignatureVerifier):
    provider = Provider.CRYPTO_FIAT
    header_name = STABLELINK_SIGNATURE_HEADER

    @property
    def secret(self) -> str | None:
        return self.settings.STABLELINK_WEBHOOK_SECRET


class CoinbaseSignatureVerifier(HmacSignatureVerifier):
    provider = Provider.CRYPTO_NATIVE
    header_name = COINBASE_SIGNATURE_HEADER

    @property
    def secret(self) -> str | None:
        return self.settings.COINBASE_WEBHOOK_SECRET


class PayPalSignatureVerifier(SignatureVerifier):
    """Asks PayPal itself whether the transmission is genuine; fails closed."""

    provider = Provider.WALLET

    def __init__(self, settings: Settings, http_client: httpx.Client, auth: PayPalAuth) -> None:
        super().__init__(settings)
        self.http = http_client
        self.auth = auth

    def is_configured(self) -> bool:
        return bool(self.settings.PAYPAL_WEBHOOK_ID) and self.auth.has_credentials()

    def secret_status(self) -> dict[str, str | None]:
        return masked_secret_status({"webhook_id": self.settings.PAYPAL_WEBHOOK_ID})

    def _verify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        transmission = {field: _get_header(headers, name) for field, name in PAYPAL_TRANSMISSION_HEADERS.items()}
        missing = [PAYPAL_TRANSMISSION_HEADERS[field] for field, value in transmission.items() if not value]
        if missing:
            logger.warning("PayPal transmission headers missing", extra={"missing": missing})
            return False
        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.warning("PayPal webhook body is not JSON")
            return False

        try:
            token = self.auth.access_token()
            response = self.http.post(
                f"{self.auth.base_url}/v1/notifications/verify-webhook-signature",
                headers={"Authorization": f"Bearer {token}"},
                json={**transmission, "webhook_id": self.settings.PAYPAL_WEBHOOK_ID, "webhook_event": event},
            )
            response.raise_for_status()
            verification = response.json()
        except (ProviderUnavailableError, httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "PayPal signature verification call failed",
                extra={"cause": exc.__class__.__name__},
            )
            return False

        status = verification.get("verification_status") if isinstance(verification, dict) else None
        if status != "SUCCESS":
            logger.warning("PayPal rejected webhook signature", extra={"verification_status": status})
            return False
        return True


def build_verifiers(
    settings: Settings, http_client: httpx.Client, paypal_auth: PayPalAuth
) -> dict[Provider, SignatureVerifier]:
    return {
        Provider.CARD: StripeSignatureVerifier(settings),
        Provider.WALLET: PayPalSignatureVerifier(settings, http_client, paypal_auth),
        Provider.CRYPTO_FIAT: StableLinkSignatureVerifier(settings),
        Provider.CRYPTO_NATIVE: CoinbaseSignatureVerifier(settings),
    }


__all__ = [
    "SignatureVerifier",
    "StripeSignatureVerifier",
    "PayPalSignatureVerifier",
    "StableLinkSignatureVerifier",
    "CoinbaseSignatureVerifier",
    "build_verifiers",
    "compute_hmac_signature",
    "STRIPE_SIGNATURE_HEADER",
    "STABLELINK_SIGNATURE_HEADER",
    "COINBASE_SIGNATURE_HEADER",
    "PAYPAL_TRANSMISSION_HEADERS",
]
