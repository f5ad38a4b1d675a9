"""ISO-4217 currencies accepted for checkout and their minor-unit exponents."""
from decimal import ROUND_HALF_UP, Decimal

# Most currencies carry two decimal places; only the exceptions are listed.
_ZERO_DECIMAL = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
)
_THREE_DECIMAL = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})
_TWO_DECIMAL = frozenset(
    {
        "AED", "ARS", "AUD", "BGN", "BRL", "CAD", "CHF", "CNY", "COP", "CZK", "DKK", "EGP", "EUR",
        "GBP", "HKD", "HUF", "IDR", "ILS", "INR", "KES", "MAD", "MXN", "MYR", "NGN", "NOK", "NZD",
        "PEN", "PHP", "PKR", "PLN", "QAR", "RON", "SAR", "SEK", "SGD", "THB", "TRY", "TWD", "UAH",
        "USD", "ZAR",
    }
)

SUPPORTED_CURRENCIES = _ZERO_DECIMAL | _TWO_DECIMAL | _THREE_DECIMAL


def is_supported(currency: str) -> bool:
    return currency.upper() in SUPPORTED_CURRENCIES


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places the currency's smallest unit represents."""

    code = currency.upper()
    if code not in SUPPORTED_CURRENCIES:
        raise ValueError(f"Unsupported currency: {currency}")
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    step = Decimal(1).scaleb(-minor_unit_exponent(currency))
    return Decimal(str(amount)).quantize(step, rounding=ROUND_HALF_UP)


__all__ = ["SUPPORTED_CURRENCIES", "is_supported", "minor_unit_exponent", "quantize_amount"]
