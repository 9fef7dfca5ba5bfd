"""
Tests for locale-aware date parsing.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.utils.dates import parse_date, to_iso
from datetime import date


class TestEnglishDates:

    def test_month_first_numeric(self):
        assert parse_date("06/15/2023", "en") == date(2023, 6, 15)

    def test_day_first_when_month_first_impossible(self):
        assert parse_date("15/06/2023", "en") == date(2023, 6, 15)

    def test_spelled_month(self):
        assert parse_date("June 15, 2023", "en") == date(2023, 6, 15)
        assert parse_date("Sept. 3rd, 2023", "en") == date(2023, 9, 3)

    def test_iso(self):
        assert parse_date("2023-06-15", "en") == date(2023, 6, 15)


class TestHungarianDates:

    def test_year_first_with_trailing_dot(self):
        assert parse_date("2023.06.15.", "hu") == date(2023, 6, 15)

    def test_year_first_spaced(self):
        assert parse_date("2023. 06. 15.", "hu") == date(2023, 6, 15)

    def test_day_first(self):
        assert parse_date("15.06.2023", "hu") == date(2023, 6, 15)

    def test_spelled_month(self):
        assert parse_date("2023. június 15.", "hu") == date(2023, 6, 15)


class TestInvalidDates:

    def test_invalid_values(self):
        assert parse_date("2023.13.45", "hu") is None
        assert parse_date("not a date", "en") is None
        assert parse_date("", "en") is None
        assert parse_date(None, "hu") is None

    def test_to_iso(self):
        assert to_iso(date(2023, 6, 15)) == "2023-06-15"
        assert to_iso(None) is None
