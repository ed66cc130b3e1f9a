"""Tests for report validation."""

from datetime import date, datetime, timedelta

import pytest
from factories import FIXED_NOW, make_day, make_report

from usage_ledger.core.config import ValidationConfig
from usage_ledger.core.errors import ValidationError
from usage_ledger.ledger.validation import (
    is_valid_date,
    validate_daily_token_math,
    validate_report,
    validate_token_math,
)
from usage_ledger.models import DateRange, UsageReport, UsageTotals

TODAY = FIXED_NOW.date()


def _iso(days_from_today: int) -> str:
    return (TODAY + timedelta(days=days_from_today)).isoformat()


def _totals_only(**values) -> UsageReport:
    return UsageReport(
        totals=UsageTotals(**values),
        date_range=DateRange(start=_iso(-3), end=_iso(-1)),
    )


class TestTokenMath:
    """Tests for the token arithmetic check."""

    def test_exact_sum_accepted(self):
        """Components equal to the total pass."""
        totals = UsageTotals(
            input_tokens=6000,
            output_tokens=3000,
            cache_creation_tokens=500,
            cache_read_tokens=500,
            total_tokens=10000,
        )
        assert validate_token_math(totals)

    def test_within_one_percent_accepted(self):
        """A 1% mismatch on the totals is tolerated."""
        totals = UsageTotals(input_tokens=9900, total_tokens=10000)
        assert validate_token_math(totals)

    def test_beyond_one_percent_rejected(self):
        totals = UsageTotals(input_tokens=9899, total_tokens=10000)
        assert not validate_token_math(totals)

    def test_zero_total_requires_zero_components(self):
        """A zero total only matches all-zero components."""
        assert validate_token_math(UsageTotals())
        assert not validate_token_math(UsageTotals(input_tokens=1))

    def test_daily_check_uses_absolute_epsilon(self):
        """Daily entries tolerate an off-by-one total but not more."""
        assert validate_daily_token_math(make_day("2025-01-01", total_tokens=1001))
        assert not validate_daily_token_math(make_day("2025-01-01", total_tokens=1002))

    def test_report_with_mismatched_totals_rejected(self):
        """6000 + 3000 + 500 + 500 does not add up to 50000."""
        report = _totals_only(
            input_tokens=6000,
            output_tokens=3000,
            cache_creation_tokens=500,
            cache_read_tokens=500,
            total_tokens=50000,
        )
        with pytest.raises(ValidationError, match="Token calculation invalid"):
            validate_report(report, TODAY)

    def test_report_with_mismatched_day_rejected(self):
        report = make_report(make_day("2025-01-05", total_tokens=2000))
        report.totals.total_tokens = 1000
        with pytest.raises(ValidationError, match="Token calculation invalid for 2025-01-05"):
            validate_report(report, TODAY)

    def test_custom_tolerance(self):
        """A configured tolerance replaces the 1% default."""
        report = _totals_only(input_tokens=9500, total_tokens=10000)
        with pytest.raises(ValidationError):
            validate_report(report, TODAY)
        validate_report(report, TODAY, ValidationConfig(total_token_tolerance=0.05))


class TestNonNegativity:
    """Tests for the non-negativity check."""

    def test_negative_total_rejected(self):
        report = _totals_only(total_tokens=-1000)
        with pytest.raises(ValidationError, match="Negative values"):
            validate_report(report, TODAY)

    def test_negative_daily_cost_rejected(self):
        report = make_report(make_day("2025-01-05", cost=-1.0))
        report.totals.total_cost = 0.0
        with pytest.raises(ValidationError, match="Negative values"):
            validate_report(report, TODAY)


class TestDates:
    """Tests for date format and future-date checks."""

    def test_today_accepted(self):
        report = make_report(make_day(_iso(0)))
        validate_report(report, TODAY)

    def test_tomorrow_rejected(self):
        report = make_report(make_day(_iso(1)))
        with pytest.raises(ValidationError, match="Future date"):
            validate_report(report, TODAY)

    def test_range_end_a_week_ahead_rejected(self):
        """The range endpoint is checked even when daily dates are in the past."""
        report = make_report(make_day(_iso(-1)))
        report.date_range.end = _iso(7)
        with pytest.raises(ValidationError, match="Future date"):
            validate_report(report, TODAY)

    def test_accepts_datetime_and_string_today(self):
        report = make_report(make_day(_iso(0)))
        validate_report(report, datetime(2025, 1, 10, 23, 59))
        validate_report(report, "2025-01-10")

    @pytest.mark.parametrize("value", ["2025-1-05", "05-01-2025", "2025/01/05", "2025-13-01"])
    def test_malformed_dates_rejected(self, value):
        report = make_report(make_day(value))
        with pytest.raises(ValidationError, match="Invalid date format"):
            validate_report(report, TODAY)

    def test_is_valid_date(self):
        assert is_valid_date("2024-02-29")
        assert not is_valid_date("2025-02-29")
        assert not is_valid_date("")

    def test_duplicate_daily_dates_rejected(self):
        day = make_day("2025-01-05")
        report = make_report(day, day)
        with pytest.raises(ValidationError, match="duplicate daily entry"):
            validate_report(report, date(2025, 1, 10))


class TestValidReports:
    def test_multi_day_report_accepted(self):
        report = make_report(make_day("2025-01-01"), make_day("2025-01-02"), make_day("2025-01-03"))
        validate_report(report, TODAY)
