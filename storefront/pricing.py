from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

CENT = Decimal("0.01")
# Shipping charge per started kilogram
SHIPPING_RATE_PER_KG = Decimal("100")
PRICE_TOLERANCE = Decimal("1")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount_percent(mrp: Any, price: Any) -> int:
    mrp, price = to_decimal(mrp), to_decimal(price)
    if mrp <= 0 or price >= mrp:
        return 0
    percent = (mrp - price) / mrp * 100
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_price_from_discount(mrp: Any, discount_percent: Any) -> Decimal:
    mrp, discount_percent = to_decimal(mrp), to_decimal(discount_percent)
    if mrp <= 0 or discount_percent <= 0:
        return mrp
    price = mrp - mrp * discount_percent / 100
    return price.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def get_price_info(
    price: Any = None,
    mrp: Any = None,
    discount: Any = None,
    total: Any = None,
) -> dict:
    """Resolve what a customer pays and what they save.

    The effective price is taken from ``price``, then ``total``, then ``mrp``.
    A discount computed from mrp/price wins over a manually stored one.
    """
    if price is not None:
        final_price = to_decimal(price)
    elif total is not None:
        final_price = to_decimal(total)
    else:
        final_price = to_decimal(mrp)
    original_price = to_decimal(mrp) if mrp else final_price

    calculated = calculate_discount_percent(original_price, final_price)
    discount_percent = calculated if calculated > 0 else int(to_decimal(discount))

    has_discount = discount_percent > 0 and original_price > final_price
    return {
        "final_price": final_price,
        "original_price": original_price,
        "discount_percent": discount_percent,
        "has_discount": has_discount,
        "savings": original_price - final_price if has_discount else Decimal("0"),
    }


def validate_pricing(price: Any = None, mrp: Any = None, discount: Any = None) -> list[str]:
    errors: list[str] = []
    price = to_decimal(price) if price is not None else None
    mrp = to_decimal(mrp) if mrp is not None else None
    discount = to_decimal(discount) if discount is not None else None

    if mrp is not None and mrp <= 0:
        errors.append("MRP must be greater than 0")
    if price is not None and price <= 0:
        errors.append("Price must be greater than 0")
    if mrp and price and price > mrp:
        errors.append("Price cannot be greater than MRP")
    if discount is not None and (discount < 0 or discount > 100):
        errors.append("Discount must be between 0 and 100")

    if mrp and price and discount:
        expected = calculate_price_from_discount(mrp, discount)
        if abs(price - expected) > PRICE_TOLERANCE:
            errors.append(
                f"Price (₹{price}) doesn't match MRP (₹{mrp}) with {discount}% discount (expected ₹{expected})"
            )
    return errors


def calculate_item_tax(price: Any, quantity: int, gst_percentage: Any, tax_inclusive: bool) -> Decimal:
    line = to_decimal(price) * quantity
    rate = to_decimal(gst_percentage) / 100
    if rate <= 0:
        return Decimal("0")
    if tax_inclusive:
        return line * rate / (1 + rate)
    return line * rate


def calculate_shipping(total_weight_grams: Any) -> Decimal:
    weight = to_decimal(total_weight_grams)
    if weight <= 0:
        return Decimal("0")
    return math.ceil(weight / 1000) * SHIPPING_RATE_PER_KG


def calculate_cart_totals(lines: Iterable[dict], discount: Any = 0) -> dict:
    """Totals for cart lines.

    Each line carries ``price``, ``quantity``, ``weight`` (grams per unit),
    ``gst_percentage`` and ``tax_inclusive``. Tax-inclusive prices contribute
    their pre-tax base to the subtotal so that tax is never counted twice.
    """
    subtotal = Decimal("0")
    tax = Decimal("0")
    weight = Decimal("0")
    for line in lines:
        quantity = int(line["quantity"])
        line_total = to_decimal(line["price"]) * quantity
        line_tax = calculate_item_tax(line["price"], quantity, line.get("gst_percentage", 0), bool(line.get("tax_inclusive")))
        subtotal += line_total - line_tax if line.get("tax_inclusive") else line_total
        tax += line_tax
        weight += to_decimal(line.get("weight") or 0) * quantity

    shipping = calculate_shipping(weight)
    discount = money(discount)
    total = subtotal + tax + shipping - discount
    if total < 0:
        total = Decimal("0")
    return {
        "subtotal": money(subtotal),
        "tax": money(tax),
        "shipping": money(shipping),
        "discount": discount,
        "total": money(total),
        "total_weight": int(weight),
    }
