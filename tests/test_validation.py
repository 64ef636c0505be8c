from decimal import Decimal

import pytest

from shop_service.db.schemas import CartUpdateRequest, SetQuantity, StepAdjustment
from shop_service.errors import BadRequest
from shop_service.validation import clean_string, parse_quantity, required_string, to_decimal


@pytest.mark.parametrize("value, expected", [
    (None, 1),
    ("", 1),
    ("  ", 1),
    (3, 3),
    ("4", 4),
    (" 7 ", 7),
    (2.0, 2),
])
def test_parse_quantity_accepts_integral_values(value, expected):
    assert parse_quantity(value, default=1, minimum=1, message="bad") == expected


@pytest.mark.parametrize("value", [
    "abc", 2.5, "1.5", 0, -1, True, float("inf"), "nan",
    2 ** 31, "1e40", 1e300, "1e999999999",
])
def test_parse_quantity_rejects_invalid_values(value):
    with pytest.raises(BadRequest) as exc_info:
        parse_quantity(value, default=1, minimum=1, message="quantity must be a positive number")
    assert exc_info.value.detail == "quantity must be a positive number"


def test_parse_quantity_allows_zero_when_minimum_is_zero():
    assert parse_quantity("0", default=None, minimum=0, message="bad") == 0


def test_to_decimal():
    assert to_decimal("12.50") == Decimal("12.50")
    assert to_decimal(3) == Decimal(3)
    assert to_decimal(Decimal("1.10")) == Decimal("1.10")
    assert to_decimal("not a price") is None
    assert to_decimal(None) is None
    assert to_decimal(float("nan")) is None
    assert to_decimal(False) is None


def test_string_helpers():
    assert required_string(" a ")
    assert not required_string("   ")
    assert not required_string(5)
    assert clean_string("  Mumbai ") == "Mumbai"
    assert clean_string("   ") is None
    assert clean_string(None) is None


def test_cart_update_request_normalizes_action():
    body = CartUpdateRequest(userId="u1", productId="p1", action="decrease")
    assert body.to_adjustment() == StepAdjustment(delta=-1)


def test_cart_update_request_normalizes_quantity():
    body = CartUpdateRequest(userId="u1", productId="p1", quantity="0")
    assert body.to_adjustment() == SetQuantity(quantity=0)


@pytest.mark.parametrize("fields", [
    {},
    {"action": "increase", "quantity": 2},
    {"action": "double"},
    {"quantity": -1},
    {"quantity": ""},
])
def test_cart_update_request_rejects_bad_shapes(fields):
    body = CartUpdateRequest(userId="u1", productId="p1", **fields)
    with pytest.raises(BadRequest):
        body.to_adjustment()
