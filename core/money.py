"""Decimal helpers for commission amounts."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any

# ISO 4217 currencies whose minor unit is not 2 digits
_MINOR_UNITS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}

ZERO = Decimal("0")


def minor_units(currency: str) -> int:
    """Number of decimal places used by ``currency``."""
    return _MINOR_UNITS.get(currency.upper(), 2)


def quantize_money(amount: Any, currency: str) -> Decimal:
    """
    Round ``amount`` to the currency's minor unit.

    Uses banker's rounding (half-even) so that rounding errors do not
    accumulate in one direction across many small commissions.
    """
    value = to_decimal(amount)
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return value.quantize(exponent, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Any) -> Decimal:
    """Convert DB/JSON numerics (Decimal, int, float, str, None) to Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid decimal value: {value!r}") from e


def calculate_commission(gross_amount: Any, rate: Any, currency: str) -> Decimal:
    """
    Commission for a transaction.

    Example:
        100.00 USD x 20% = 20.00 USD
    """
    return quantize_money(to_decimal(gross_amount) * to_decimal(rate) / Decimal(100), currency)


def money_to_json(amount: Any, currency: str | None = None) -> float:
    """Render an amount for JSON responses."""
    if currency:
        return float(quantize_money(amount, currency))
    return float(to_decimal(amount))
