"""
Unit tests for the dates module.

Tests for parse_date, normalize_date and split_date_range across ISO,
numeric, named-month (English, Czech, German) and range inputs.
"""

from datetime import date, datetime

import pytest

from src.ingestion.normalization.dates import (
    fold,
    normalize_date,
    parse_date,
    split_date_range,
)


class TestNormalizeDate:
    """Tests for normalize_date."""

    @pytest.mark.parametrize("value", ["2025-12-04", "2026-01-31", "2028-02-29"])
    def test_iso_dates_unchanged(self, value):
        """Valid ISO dates should come back exactly as given."""
        assert normalize_date(value) == value

    @pytest.mark.parametrize(
        "value",
        ["7–9 November 2025", "7-9 November 2025", "7.–9. 11. 2025", "November 7-9, 2025"],
    )
    def test_day_range_resolves_to_first_day(self, value):
        """A day range should normalize to its first day, not its last."""
        assert normalize_date(value) == "2025-11-07"
        assert parse_date(value) == date(2025, 11, 7)

    def test_invalid_iso_date_rejected(self):
        """An ISO-shaped but impossible date should yield None."""
        assert normalize_date("2025-02-30") is None

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("4. prosince 2025", "2025-12-04"),
            ("4. Prosince 2025", "2025-12-04"),
            ("12. března 2026", "2026-03-12"),
            ("12. brezna 2026", "2026-03-12"),
            ("1. led 2026", "2026-01-01"),
            ("7th November 2025", "2025-11-07"),
            ("November 7, 2025", "2025-11-07"),
            ("3. März 2026", "2026-03-03"),
        ],
    )
    def test_named_months(self, value, expected):
        """Localized and abbreviated month names should resolve to ISO dates."""
        assert normalize_date(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("7. 11. 2025", "2025-11-07"),
            ("7.11.2025", "2025-11-07"),
            ("15/03/2026", "2026-03-15"),
            ("12/31/2025", "2025-12-31"),
            ("2025/12/04", "2025-12-04"),
        ],
    )
    def test_numeric_forms(self, value, expected):
        """Dotted and slashed day-first dates should resolve to ISO dates."""
        assert normalize_date(value) == expected

    def test_iso_timestamp_truncated(self):
        """Timestamps should be reduced to their calendar date."""
        assert normalize_date("2025-12-04T20:00:00+01:00") == "2025-12-04"

    def test_generic_fallback(self):
        """Shapes outside the explicit patterns should go through dateutil."""
        assert normalize_date("2025-12-4") == "2025-12-04"

    @pytest.mark.parametrize("value", [None, "", "TBA", "coming soon", "every Friday"])
    def test_unparseable(self, value):
        """Unparseable input should yield None rather than raise."""
        assert normalize_date(value) is None


class TestParseDate:
    """Tests for parse_date."""

    def test_date_passthrough(self):
        assert parse_date(date(2026, 5, 1)) == date(2026, 5, 1)

    def test_datetime_reduced(self):
        assert parse_date(datetime(2026, 5, 1, 22, 30)) == date(2026, 5, 1)

    def test_date_inside_text(self):
        """A date embedded in surrounding text should be found."""
        assert parse_date("Sobota 4. prosince 2025, 20:00") == date(2025, 12, 4)


class TestSplitDateRange:
    """Tests for split_date_range."""

    def test_day_range_with_month_name(self):
        start, end = split_date_range("7-9 November 2025")
        assert parse_date(start) == date(2025, 11, 7)
        assert parse_date(end) == date(2025, 11, 9)

    def test_dotted_day_range(self):
        start, end = split_date_range("7.–9. 11. 2025")
        assert parse_date(start) == date(2025, 11, 7)
        assert parse_date(end) == date(2025, 11, 9)

    def test_month_first_range(self):
        start, end = split_date_range("November 7-9, 2025")
        assert parse_date(start) == date(2025, 11, 7)
        assert parse_date(end) == date(2025, 11, 9)

    def test_full_dates_joined_by_word(self):
        start, end = split_date_range("1. 12. 2025 až 3. 12. 2025")
        assert parse_date(start) == date(2025, 12, 1)
        assert parse_date(end) == date(2025, 12, 3)

    def test_single_date_is_not_a_range(self):
        assert split_date_range("2025-12-04") == ("2025-12-04", None)

    def test_empty(self):
        assert split_date_range(None) == (None, None)


def test_fold_strips_diacritics():
    """fold should lowercase and remove combining marks."""
    assert fold("Března") == "brezna"
    assert fold("Zámek") == "zamek"
