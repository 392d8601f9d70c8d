from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import InvalidReference, ValidationError
from .money import ZERO, quantize_money, quantize_price, to_decimal

# Maximum unit price: 9,999,999,999.99 (Numeric(12, 2))
MAX_PRICE = Decimal("9999999999.99")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def parse_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def parse_decimal(value: Any, field: str) -> Decimal:
    try:
        return to_decimal(value, field=field)
    except ValueError as e:
        raise ValidationError(str(e))


def parse_reference_id(value: Any) -> int:
    """
    Parse an approval reference id.

    Accepts positive ints and digit strings; anything else is an
    InvalidReference (a ValidationError).
    """
    try:
        parsed = parse_int(value, "reference_id")
    except ValidationError as e:
        raise InvalidReference(f"invalid reference id {value!r}: {e}")
    if parsed <= 0:
        raise InvalidReference(f"invalid reference id {value!r}: must be positive")
    return parsed


def parse_pagination(page: Any, limit: Any) -> tuple[int, int]:
    """page defaults to 1; limit defaults to 20 and is capped at 100."""
    page_num = parse_int(page, "page") if page not in (None, "") else 1
    limit_num = parse_int(limit, "limit") if limit not in (None, "") else DEFAULT_PAGE_SIZE
    if page_num < 1:
        page_num = 1
    if limit_num < 1:
        limit_num = DEFAULT_PAGE_SIZE
    return page_num, min(limit_num, MAX_PAGE_SIZE)


def enforce_rules_product(sku: Any, name: Any, price: Any) -> tuple[str, str, Decimal]:
    """Normalize and range-check a new product."""
    sku = (sku or "").strip() if isinstance(sku, str) else ""
    name = (name or "").strip() if isinstance(name, str) else ""
    if not sku:
        raise ValidationError("sku is required")
    if not name:
        raise ValidationError("name is required")
    if len(sku) > 100:
        raise ValidationError("sku exceeds max length 100")
    if len(name) > 255:
        raise ValidationError("name exceeds max length 255")

    price_dec = parse_decimal(price if price is not None else 0, "price")
    if price_dec < ZERO:
        raise ValidationError("price must be >= 0")
    if price_dec > MAX_PRICE:
        raise ValidationError(f"price cannot exceed {MAX_PRICE}")
    return sku, name, quantize_price(price_dec)


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None


def _parse_line_price(value: Any, field: str) -> Decimal | None:
    """Optional per-line price; when present it must be > 0."""
    if value in (None, ""):
        return None
    price = parse_decimal(value, field)
    if price <= ZERO:
        raise ValidationError(f"{field} must be > 0")
    if price > MAX_PRICE:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE}")
    return quantize_price(price)


def enforce_rules_order_items(items: Any) -> list[OrderLine]:
    """
    Items must be a non-empty list of {product_id, quantity > 0, unit_price?}.

    unit_price is the negotiated line price; lines without one take the
    catalog price when the order is recorded. Order is preserved: stock is
    adjusted line by line in this order.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    lines: list[OrderLine] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"items[{index}].product_id is required")
        product_id = parse_int(item.get("product_id"), f"items[{index}].product_id")
        quantity = parse_int(item.get("quantity"), f"items[{index}].quantity")
        if product_id <= 0:
            raise ValidationError(f"items[{index}].product_id must be positive")
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be > 0")
        unit_price = _parse_line_price(item.get("unit_price"), f"items[{index}].unit_price")
        lines.append(OrderLine(product_id=product_id, quantity=quantity, unit_price=unit_price))
    return lines


def enforce_rules_side_fees(side_fees: Any) -> Decimal:
    if side_fees in (None, ""):
        return ZERO
    fees = parse_decimal(side_fees, "side_fees")
    if fees < ZERO:
        raise ValidationError("side_fees must be >= 0")
    return quantize_money(fees)
