from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError
from .time_utils import as_utc_naive, parse_iso_datetime


MONEY_QUANTUM = Decimal("0.01")

# Maximum amount: 99,999,999.99 (fits Numeric(10, 2))
MAX_AMOUNT = Decimal("99999999.99")


@dataclass(frozen=True)
class ItemRequest:
    """One requested sale line. unit_price None means the catalog sale price."""
    product_id: int
    quantity: int
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class PaymentRequest:
    payment_method_id: int
    amount: Decimal
    reference: str | None = None
    notes: str | None = None


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, decimals, scientific notation and empty strings.
    """
    if isinstance(value, int) and not isinstance(value, bool):
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


def coerce_id(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    ident = coerce_int(value, field)
    if ident <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return ident


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    qty = coerce_int(value, field)
    if qty <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return qty


def to_money(value: Any, field: str = "amount") -> Decimal:
    """Coerce to a Decimal quantized to cents (half-up)."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        elif isinstance(value, str) and value.strip():
            amount = Decimal(value.strip())
        else:
            raise ValidationError(f"{field} must be a number")
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    amount = amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds the maximum of {MAX_AMOUNT}")
    return amount


def coerce_unit_price(value: Any, field: str = "unit_price") -> Decimal:
    price = to_money(value, field)
    if price < 0:
        raise ValidationError(f"{field} cannot be negative")
    return price


def coerce_payment_amount(value: Any, field: str = "amount") -> Decimal:
    amount = to_money(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return amount


def coerce_optional_datetime(value: Any, field: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc_naive(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def coerce_optional_text(value: Any, field: str, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text or None


def parse_item_requests(raw_items: Any) -> list[ItemRequest]:
    if not raw_items:
        raise ValidationError("A sale must have at least one item")
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError("items must be a list")

    items: list[ItemRequest] = []
    for index, raw in enumerate(raw_items):
        if isinstance(raw, ItemRequest):
            raw = {
                "product_id": raw.product_id,
                "quantity": raw.quantity,
                "unit_price": raw.unit_price,
            }
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        unit_price = raw.get("unit_price")
        items.append(ItemRequest(
            product_id=coerce_id(raw.get("product_id"), f"items[{index}].product_id"),
            quantity=coerce_quantity(raw.get("quantity"), f"items[{index}].quantity"),
            unit_price=None if unit_price is None else coerce_unit_price(unit_price, f"items[{index}].unit_price"),
        ))
    return items


def parse_payment_requests(raw_payments: Any) -> list[PaymentRequest]:
    if not raw_payments:
        return []
    if not isinstance(raw_payments, (list, tuple)):
        raise ValidationError("payments must be a list")

    payments: list[PaymentRequest] = []
    for index, raw in enumerate(raw_payments):
        if isinstance(raw, PaymentRequest):
            raw = {
                "payment_method_id": raw.payment_method_id,
                "amount": raw.amount,
                "reference": raw.reference,
                "notes": raw.notes,
            }
        if not isinstance(raw, dict):
            raise ValidationError(f"payments[{index}] must be an object")
        payments.append(PaymentRequest(
            payment_method_id=coerce_id(raw.get("payment_method_id"), f"payments[{index}].payment_method_id"),
            amount=coerce_payment_amount(raw.get("amount"), f"payments[{index}].amount"),
            reference=coerce_optional_text(raw.get("reference"), f"payments[{index}].reference"),
            notes=coerce_optional_text(raw.get("notes"), f"payments[{index}].notes", max_length=1000),
        ))
    return payments


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(a - b) < tolerance
