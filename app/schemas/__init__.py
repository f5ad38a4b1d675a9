"""Pydantic schemas exposed by the API."""
from .payment import (
    CreatePaymentRequest,
    PaymentRequest,
    PaymentSessionCreated,
    PaymentStatusRead,
    ProviderInfo,
    ProvidersRead,
    WebhookAck,
)

__all__ = [
    "CreatePaymentRequest",
    "PaymentRequest",
    "PaymentSessionCreated",
    "PaymentStatusRead",
    "ProviderInfo",
    "ProvidersRead",
    "WebhookAck",
]
