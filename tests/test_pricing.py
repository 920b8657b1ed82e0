"""Tests for price, tax and shipping maths."""

from decimal import Decimal

import pytest

from storefront.pricing import (
    calculate_cart_totals,
    calculate_discount_percent,
    calculate_item_tax,
    calculate_price_from_discount,
    calculate_shipping,
    get_price_info,
    validate_pricing,
)


@pytest.mark.parametrize(
    "mrp, price, expected",
    [
        (100, 90, 10),
        (100, 100, 0),
        (100, 120, 0),
        (0, 50, 0),
        (300, 199, 34),
    ],
)
def test_calculate_discount_percent(mrp, price, expected):
    assert calculate_discount_percent(mrp, price) == expected


def test_calculate_price_from_discount_rounds_to_whole_rupees():
    assert calculate_price_from_discount(299, 15) == Decimal("254")
    assert calculate_price_from_discount(100, 0) == Decimal("100")


def test_price_info_with_discount():
    info = get_price_info(price=80, mrp=100)
    assert info["final_price"] == Decimal("80")
    assert info["original_price"] == Decimal("100")
    assert info["discount_percent"] == 20
    assert info["has_discount"] is True
    assert info["savings"] == Decimal("20")


def test_price_info_falls_back_to_total_then_mrp():
    assert get_price_info(total=50, mrp=60)["final_price"] == Decimal("50")
    info = get_price_info(mrp=60)
    assert info["final_price"] == Decimal("60")
    assert info["has_discount"] is False
    assert info["savings"] == Decimal("0")


def test_price_info_uses_stored_discount_when_nothing_to_compute():
    info = get_price_info(price=100, mrp=100, discount=10)
    assert info["discount_percent"] == 10
    # no actual saving, so no discount is advertised
    assert info["has_discount"] is False


def test_validate_pricing_ok():
    assert validate_pricing(price=90, mrp=100) == []


def test_validate_pricing_reports_each_problem():
    errors = validate_pricing(price=120, mrp=100, discount=150)
    assert "Price cannot be greater than MRP" in errors
    assert "Discount must be between 0 and 100" in errors


def test_validate_pricing_non_positive_values():
    errors = validate_pricing(price=0, mrp=-1)
    assert "MRP must be greater than 0" in errors
    assert "Price must be greater than 0" in errors


def test_validate_pricing_discount_tolerance():
    assert validate_pricing(price=90.5, mrp=100, discount=10) == []
    errors = validate_pricing(price=80, mrp=100, discount=10)
    assert len(errors) == 1
    assert "doesn't match MRP" in errors[0]


def test_item_tax_exclusive_and_inclusive():
    assert calculate_item_tax(100, 2, 5, False) == Decimal("10")
    inclusive = calculate_item_tax(105, 1, 5, True)
    assert inclusive.quantize(Decimal("0.01")) == Decimal("5.00")
    assert calculate_item_tax(100, 1, 0, False) == Decimal("0")


@pytest.mark.parametrize(
    "grams, expected",
    [(0, Decimal("0")), (1, Decimal("100")), (1000, Decimal("100")), (1001, Decimal("200")), (2500, Decimal("300"))],
)
def test_shipping_per_started_kilogram(grams, expected):
    assert calculate_shipping(grams) == expected


def test_cart_totals():
    lines = [
        {"price": 100, "quantity": 2, "weight": 250, "gst_percentage": 5, "tax_inclusive": False},
        {"price": 210, "quantity": 1, "weight": 600, "gst_percentage": 5, "tax_inclusive": True},
    ]
    totals = calculate_cart_totals(lines, discount=20)
    assert totals["subtotal"] == Decimal("400.00")
    assert totals["tax"] == Decimal("20.00")
    assert totals["shipping"] == Decimal("200.00")
    assert totals["discount"] == Decimal("20.00")
    assert totals["total"] == Decimal("600.00")
    assert totals["total_weight"] == 1100


def test_cart_totals_never_negative():
    lines = [{"price": 10, "quantity": 1, "weight": 0, "gst_percentage": 0, "tax_inclusive": False}]
    assert calculate_cart_totals(lines, discount=500)["total"] == Decimal("0.00")
