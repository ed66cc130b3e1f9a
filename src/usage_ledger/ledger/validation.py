"""Consistency checks applied to every usage report before any write.

A report is accepted only when all dates are well formed and not in the
future, every counter is non-negative, and the token components add up to
the stated total. The first failing check raises ``ValidationError`` and
nothing from the report is stored.

Totals use a relative tolerance; daily entries use an absolute epsilon,
since clients round each day independently.
"""

from __future__ import annotations

import re
from datetime import date, datetime

from usage_ledger.core.config import ValidationConfig
from usage_ledger.core.errors import ValidationError
from usage_ledger.models.usage import DailyRecord, TokenCounts, UsageReport

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TOKEN_MATH_ERROR = "Token calculation invalid: input + output + cache != total"
NEGATIVE_VALUES_ERROR = "Negative values detected in submission"


def is_valid_date(value: str) -> bool:
    """Check a string is a real calendar date in ``YYYY-MM-DD`` form."""
    if not DATE_PATTERN.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def validate_token_math(counts: TokenCounts, tolerance: float = 0.01) -> bool:
    """Relative check of the token components against the stated total.

    A zero total only matches components that are all zero.
    """
    calculated = counts.component_sum()
    if counts.total_tokens == 0:
        return calculated == 0
    return abs(calculated - counts.total_tokens) / counts.total_tokens <= tolerance


def validate_daily_token_math(day: DailyRecord, epsilon: int = 1) -> bool:
    """Absolute check of one day's components against its total."""
    return abs(day.component_sum() - day.total_tokens) <= epsilon


def has_negative_values(counts: TokenCounts) -> bool:
    return any(value < 0 for value in counts.numeric_values().values())


def _today_iso(today: date | datetime | str) -> str:
    if isinstance(today, datetime):
        return today.date().isoformat()
    if isinstance(today, date):
        return today.isoformat()
    return today


def validate_report(
    report: UsageReport,
    today: date | datetime | str,
    config: ValidationConfig | None = None,
) -> None:
    """Reject a report that is not internally consistent.

    Args:
        report: Candidate usage report.
        today: The caller's current date; a date equal to it is accepted,
            anything later is rejected.
        config: Token tolerances. Defaults to 1% relative for totals and
            an absolute epsilon of 1 for daily entries.

    Raises:
        ValidationError: With a human-readable reason for the first failure.
    """
    config = config or ValidationConfig()

    for value in report.all_dates():
        if not is_valid_date(value):
            raise ValidationError(f"Invalid date format: {value}. Expected YYYY-MM-DD")

    if has_negative_values(report.totals) or any(
        has_negative_values(day) for day in report.daily_breakdown
    ):
        raise ValidationError(NEGATIVE_VALUES_ERROR)

    if not validate_token_math(report.totals, config.total_token_tolerance):
        raise ValidationError(TOKEN_MATH_ERROR)
    for day in report.daily_breakdown:
        if not validate_daily_token_math(day, config.daily_token_epsilon):
            raise ValidationError(
                f"Token calculation invalid for {day.date}: input + output + cache != total"
            )

    limit = _today_iso(today)
    for value in report.all_dates():
        if value > limit:
            raise ValidationError(f"Future date not allowed: {value}")

    seen: set[str] = set()
    for day in report.daily_breakdown:
        if day.date in seen:
            raise ValidationError(f"Invalid usage report: duplicate daily entry for {day.date}")
        seen.add(day.date)
