"""Error taxonomy and standardized error responses."""
from typing import Any

from fastapi import status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class PaymentGatewayError(Exception):
    """Base class for failures raised by the gateway core."""

    code = "PAYMENT_GATEWAY_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    def to_response(self) -> dict[str, Any]:
        details = {"provider": self.provider} if self.provider else None
        return error_response(self.code, self.message, details)


class ConfigurationError(PaymentGatewayError):
    """Provider credentials are missing; the caller must not retry."""

    code = "PROVIDER_NOT_CONFIGURED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ProviderUnavailableError(PaymentGatewayError):
    """The provider could not be reached or answered with garbage."""

    code = "PROVIDER_UNAVAILABLE"
    status_code = status.HTTP_502_BAD_GATEWAY


class SignatureInvalidError(PaymentGatewayError):
    code = "WEBHOOK_SIGNATURE_INVALID"
    status_code = status.HTTP_400_BAD_REQUEST


class UnknownEventError(PaymentGatewayError):
    code = "WEBHOOK_EVENT_UNKNOWN"
    status_code = status.HTTP_200_OK


class SessionNotFoundError(PaymentGatewayError):
    code = "SESSION_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateSessionError(PaymentGatewayError):
    code = "SESSION_ALREADY_EXISTS"
    status_code = status.HTTP_409_CONFLICT


__all__ = [
    "error_response",
    "PaymentGatewayError",
    "ConfigurationError",
    "ProviderUnavailableError",
    "SignatureInvalidError",
    "UnknownEventError",
    "SessionNotFoundError",
    "DuplicateSessionError",
]
