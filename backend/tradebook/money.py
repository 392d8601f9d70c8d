# Overview: Fixed-precision decimal helpers for money, rates and quantities.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# Matches Numeric(18, 4) money columns
MONEY_PLACES = Decimal("0.0001")
RATE_PLACES = Decimal("0.0001")
PRICE_PLACES = Decimal("0.01")

ZERO = Decimal("0")


def to_decimal(value, *, field: str = "value") -> Decimal:
    """
    Coerce int / str / Decimal into a Decimal.

    Floats are routed through str() so 0.1 stays 0.1.
    Raises ValueError on anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    else:
        raise ValueError(f"{field} must be a number")

    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def quantize_price(value: Decimal) -> Decimal:
    return Decimal(value).quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)


def money_str(value: Decimal | None, places: Decimal = MONEY_PLACES) -> str | None:
    """Serialize a stored decimal with fixed places (e.g. '12.5000')."""
    if value is None:
        return None
    return str(Decimal(value).quantize(places, rounding=ROUND_HALF_UP))
