"""
Unit tests for the ISO 4217 currency registry.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.values import Currency
from ledger_kernel.exceptions import InvalidCurrencyError


class TestCurrencyRegistry:

    @pytest.mark.parametrize(
        "code,places",
        [("ZAR", 2), ("USD", 2), ("EUR", 2), ("JPY", 0), ("KWD", 3)],
    )
    def test_decimal_places(self, code, places):
        assert CurrencyRegistry.get_decimal_places(code) == places

    def test_lookup_is_case_insensitive(self):
        assert CurrencyRegistry.is_valid("zar")
        assert CurrencyRegistry.get_info(" usd ").code == "USD"

    def test_unknown_code(self):
        assert not CurrencyRegistry.is_valid("ABC")
        assert CurrencyRegistry.get_info("ABC") is None
        with pytest.raises(ValueError):
            CurrencyRegistry.get_decimal_places("ABC")

    def test_validate_normalises(self):
        assert CurrencyRegistry.validate(" zar ") == "ZAR"

    def test_validate_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            CurrencyRegistry.validate("RAND")

    def test_all_codes_contains_defaults(self):
        assert {"ZAR", "USD", "JPY"} <= CurrencyRegistry.all_codes()


class TestCurrencyValue:

    def test_minor_unit(self):
        assert Currency("ZAR").minor_unit == Decimal("0.01")
        assert Currency("JPY").minor_unit == Decimal("1")
        assert Currency("KWD").minor_unit == Decimal("0.001")

    def test_invalid_code_raises(self):
        with pytest.raises(InvalidCurrencyError) as exc_info:
            Currency("XXQ")
        assert exc_info.value.code == "INVALID_CURRENCY"
