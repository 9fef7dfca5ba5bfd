"""
Tests for locale-aware amount parsing and formatting.

Tests cover:
- Hungarian thousands separators (dot and space)
- English comma grouping with decimal point
- Symbols and currency words stripped before parsing
- Unparseable input returns zero
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.utils.money import parse_amount, format_amount
from decimal import Decimal
import pytest


class TestParseAmount:
    """Raw amount strings from both languages."""

    @pytest.mark.parametrize("raw,language,expected", [
        ("175.945", "hu", Decimal("175945")),
        ("175,945.50", "en", Decimal("175945.50")),
        ("1.234.567", "hu", Decimal("1234567")),
        ("1,5", "hu", Decimal("1.5")),
        ("Ft. 123 456,78", "hu", Decimal("123456.78")),
        ("$1,234.56", "en", Decimal("1234.56")),
        ("121 975", "hu", Decimal("121975")),
        ("135.00", "en", Decimal("135.00")),
    ])
    def test_known_formats(self, raw, language, expected):
        assert parse_amount(raw, language) == expected

    def test_garbage_is_zero(self):
        assert parse_amount("abc", "hu") == Decimal("0")
        assert parse_amount("", "en") == Decimal("0")
        assert parse_amount(None, "en") == Decimal("0")

    def test_integers_are_exact(self):
        """No float artifacts for large integer amounts."""
        value = parse_amount("9.999.999", "hu")
        assert isinstance(value, Decimal)
        assert str(value) == "9999999"

    def test_language_does_not_change_separator_rules(self):
        assert parse_amount("1.234,50", "en") == parse_amount("1.234,50", "hu") == Decimal("1234.50")


class TestFormatAmount:

    def test_forint_is_whole_and_space_grouped(self):
        assert format_amount(Decimal("121975"), "HUF", "hu") == "121 975 Ft"

    def test_dollar_prefix(self):
        assert format_amount(Decimal("1234.5"), "USD", "en") == "$1,234.50"

    def test_hungarian_euro(self):
        assert format_amount(Decimal("1234.5"), "EUR", "hu") == "1 234,50 €"

    def test_unknown_currency_suffix(self):
        assert format_amount(Decimal("10"), "CAD", "en") == "10.00 CAD"

    def test_missing_amount(self):
        assert format_amount(None) == "N/A"
