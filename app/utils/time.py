"""Time utilities."""
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lower-case base 36."""

    if value < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    encoded = []
    while value:
        value, remainder = divmod(value, 36)
        encoded.append(digits[remainder])
    return "".join(reversed(encoded))


__all__ = ["utcnow", "to_base36"]
