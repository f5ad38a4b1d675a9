"""Payment session model definitions."""
from __future__ import annotations

import enum
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Provider(str, enum.Enum):
    """Closed set of payment providers the gateway can talk to."""

    CARD = "card"
    WALLET = "wallet"
    CRYPTO_FIAT = "crypto-fiat"
    CRYPTO_NATIVE = "crypto-native"

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        """Resolve a provider tag, accepting the vendor names as aliases."""

        if isinstance(value, Provider):
            return value
        normalized = value.strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            pass
        try:
            return PROVIDER_ALIASES[normalized]
        except KeyError:
            raise ValueError(f"Unknown payment provider: {value!r}") from None

    @property
    def session_prefix(self) -> str:
        return _SESSION_PREFIXES[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


PROVIDER_ALIASES = {
    "stripe": Provider.CARD,
    "paypal": Provider.WALLET,
    "stablelink": Provider.CRYPTO_FIAT,
    "coinbase": Provider.CRYPTO_NATIVE,
}

_SESSION_PREFIXES = {
    Provider.CARD: "stripe",
    Provider.WALLET: "pp",
    Provider.CRYPTO_FIAT: "sl",
    Provider.CRYPTO_NATIVE: "cb",
}

_DISPLAY_NAMES = {
    Provider.CARD: "Card Payment",
    Provider.WALLET: "PayPal",
    Provider.CRYPTO_FIAT: "StableLink",
    Provider.CRYPTO_NATIVE: "Cryptocurrency",
}


class SessionStatus(str, enum.Enum):
    """Possible statuses for a payment session."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.PENDING


class PaymentSessionRecord(Base):
    """Persisted checkout attempt against one provider."""

    __tablename__ = "payment_sessions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_session_positive_amount"),
        Index("ix_payment_sessions_status", "status"),
        Index("ix_payment_sessions_order_id", "order_id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    order_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 3), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        SqlEnum(SessionStatus), nullable=False, default=SessionStatus.PENDING
    )
    checkout_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    provider_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    degraded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PaymentSessionReference(Base):
    """Provider-side identifier pointing back at a payment session."""

    __tablename__ = "payment_session_references"
    __table_args__ = (
        UniqueConstraint("provider", "reference", name="uq_payment_session_references_provider_reference"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("payment_sessions.id"), nullable=False, index=True
    )
