"""ORM models package."""
from .base import Base
from .payment_session import (
    PROVIDER_ALIASES,
    PaymentSessionRecord,
    PaymentSessionReference,
    Provider,
    SessionStatus,
)

__all__ = [
    "Base",
    "PROVIDER_ALIASES",
    "PaymentSessionRecord",
    "PaymentSessionReference",
    "Provider",
    "SessionStatus",
]
