"""Schemas for payment session requests and responses."""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from app.models.payment_session import Provider, SessionStatus
from app.utils.currency import is_supported, quantize_amount


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentRequest(_CamelModel):
    """Provider-agnostic description of what the payer should be charged."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    order_id: str = Field(min_length=1, max_length=128)
    # Declared before amount so the amount validator sees the normalized code.
    currency: str = "GBP"
    amount: Decimal = Field(gt=0)
    description: str | None = None
    return_url: HttpUrl
    cancel_url: HttpUrl
    customer_email: EmailStr | None = None

    @field_validator("order_id")
    @classmethod
    def _validate_order_id(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("orderId must not be blank")
        return cleaned

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3 or not normalized.isalpha():
            raise ValueError("Currency must be a 3-letter code")
        if not is_supported(normalized):
            raise ValueError(f"Currency {normalized} is not supported")
        return normalized

    @field_validator("amount")
    @classmethod
    def _quantize_amount(cls, value: Decimal, info: ValidationInfo) -> Decimal:
        currency = info.data.get("currency")
        if currency is None:
            # currency failed its own validation
            quantized = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        else:
            quantized = quantize_amount(value, currency)
        if quantized <= 0:
            raise ValueError("amount must be at least one minor unit of the currency")
        return quantized


class CreatePaymentRequest(PaymentRequest):
    """Body of ``POST /payments/create``."""

    provider: Provider

    @field_validator("provider", mode="before")
    @classmethod
    def _parse_provider(cls, value: object) -> Provider:
        if isinstance(value, str):
            return Provider.parse(value)
        return value  # type: ignore[return-value]

    def to_payment_request(self) -> PaymentRequest:
        return PaymentRequest(**self.model_dump(exclude={"provider"}))


class PaymentSessionCreated(_CamelModel):
    session_id: str
    payment_url: str
    provider: Provider
    amount: Decimal
    currency: str
    order_id: str


class PaymentStatusRead(_CamelModel):
    session_id: str
    status: SessionStatus
    order_id: str
    amount: Decimal
    currency: str
    provider: Provider
    created_at: datetime


class WebhookAck(BaseModel):
    received: bool = True


class ProviderInfo(BaseModel):
    id: Provider
    name: str
    available: bool
    currencies: list[str]


class ProvidersRead(BaseModel):
    providers: list[ProviderInfo]
