"""
Unit Tests for the Date Normalizer

Run with: pytest tests/test_date_normalizer.py -v
"""

from datetime import date, datetime

import pytest

from utils.date_normalizer import normalize_date_to_iso, try_normalize_date, validate_and_normalize_date
from utils.exceptions import DateNormalizationError

TODAY = date(2026, 2, 10)


class TestNormalizeDateToIso:
    """Test supported formats."""

    @pytest.mark.parametrize("value,expected", [
        ("2026-02-03", "2026-02-03"),
        ("  2026-02-03 ", "2026-02-03"),
        ("Feb 3, 2026", "2026-02-03"),
        ("February 3 2026", "2026-02-03"),
        ("3 Feb 2026", "2026-02-03"),
        ("3 February, 2026", "2026-02-03"),
        ("2026/02/03", "2026-02-03"),
        ("2026-2-3", "2026-02-03"),
        ("03/02/2026", "2026-02-03"),
        ("3-2-2026", "2026-02-03"),
        ("2026-02-03T10:15:00", "2026-02-03"),
        ("Feb 3rd, 2026", "2026-02-03"),
        ("3rd February 2026", "2026-02-03"),
        ("2026.02.03", "2026-02-03"),
        ("Tuesday, 3 February 2026", "2026-02-03"),
    ])
    def test_formats(self, value, expected):
        assert normalize_date_to_iso(value, TODAY) == expected

    def test_relative_dates(self):
        assert normalize_date_to_iso("today", TODAY) == "2026-02-10"
        assert normalize_date_to_iso("Yesterday", TODAY) == "2026-02-09"

    def test_missing_year_taken_from_reference(self):
        assert normalize_date_to_iso("3 Feb", TODAY) == "2026-02-03"

    def test_date_objects(self):
        assert normalize_date_to_iso(date(2026, 1, 5)) == "2026-01-05"
        assert normalize_date_to_iso(datetime(2026, 1, 5, 23, 59)) == "2026-01-05"

    @pytest.mark.parametrize("value", ["", None, "not a date", "2026-13-45", "Smarch 3 2026", "31/02/2026", "next tuesday"])
    def test_invalid(self, value):
        with pytest.raises(DateNormalizationError):
            normalize_date_to_iso(value, TODAY)


class TestValidateAndNormalize:
    """Test non-raising variants."""

    def test_valid(self):
        result = validate_and_normalize_date("Feb 3, 2026")
        assert result.valid is True
        assert result.normalized == "2026-02-03"
        assert result.error is None

    def test_invalid(self):
        result = validate_and_normalize_date("someday")
        assert result.valid is False
        assert result.normalized is None
        assert "someday" in result.error

    def test_try_normalize(self):
        assert try_normalize_date("3 Feb 2026") == "2026-02-03"
        assert try_normalize_date("garbage") is None
        assert try_normalize_date(None) is None
        assert try_normalize_date("") is None
