"""
Unit tests for decimal handling.

Verifies:
- Float rejection at every entry point
- ROUND_HALF_UP rounding to the currency minor unit
"""

from decimal import Decimal

import pytest

from ledger_kernel.db.types import decimal_places_of, round_money
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import ValidationError


class TestToDecimal:
    """Tests for to_decimal input coercion."""

    def test_string_and_int_accepted(self):
        assert to_decimal("100.50") == Decimal("100.50")
        assert to_decimal(7) == Decimal("7")

    def test_float_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal(0.1, "unit_price")
        assert exc_info.value.field == "unit_price"

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            to_decimal(True)

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            to_decimal("ten rand")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value)


class TestRounding:
    """round_money is the only rounding step."""

    def test_half_up_not_bankers(self):
        assert round_money(Decimal("0.125")) == Decimal("0.13")
        assert round_money(Decimal("0.135")) == Decimal("0.14")

    def test_half_up_negative(self):
        assert round_money(Decimal("-0.125")) == Decimal("-0.13")

    def test_zero_decimal_places(self):
        assert round_money(Decimal("102.5"), 0) == Decimal("103")

    def test_three_decimal_places(self):
        assert round_money(Decimal("1.0005"), 3) == Decimal("1.001")

    def test_decimal_places_of(self):
        assert decimal_places_of(Decimal("2")) == 0
        assert decimal_places_of(Decimal("2.500")) == 1
        assert decimal_places_of(Decimal("0.0001")) == 4
        assert decimal_places_of(Decimal("1E+2")) == 0
