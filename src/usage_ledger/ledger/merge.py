"""Merging of per-day usage breakdowns.

Two policies exist and they are not interchangeable:

- ``additive``: a date present on both sides is summed field by field
  and its models are unioned. Used when another machine contributes
  usage for the same identity.
- ``overwrite``: a date present on both sides takes the incoming entry
  whole. Used when the same source re-uploads a corrected report.

Both keep dates that appear on one side only, and return one entry per
date in ascending date order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from usage_ledger.core.config import MergePolicyName
from usage_ledger.models.usage import NUMERIC_FIELDS, DailyRecord, DateRange, UsageTotals


def union_models(*model_lists: Iterable[str]) -> list[str]:
    """Sorted union of model identifiers."""
    merged: set[str] = set()
    for models in model_lists:
        merged.update(models)
    return sorted(merged)


def add_days(first: DailyRecord, second: DailyRecord) -> DailyRecord:
    """Field-wise sum of two entries for the same date."""
    values = {name: getattr(first, name) + getattr(second, name) for name in NUMERIC_FIELDS}
    return DailyRecord(
        date=first.date,
        models_used=union_models(first.models_used, second.models_used),
        **values,
    )


def _sorted(by_date: dict[str, DailyRecord]) -> list[DailyRecord]:
    return [by_date[day] for day in sorted(by_date)]


def _normalized(day: DailyRecord) -> DailyRecord:
    return day.model_copy(update={"models_used": union_models(day.models_used)})


def merge_additive(
    existing: Sequence[DailyRecord], incoming: Sequence[DailyRecord]
) -> list[DailyRecord]:
    by_date: dict[str, DailyRecord] = {}
    for day in [*existing, *incoming]:
        current = by_date.get(day.date)
        by_date[day.date] = add_days(current, day) if current else _normalized(day)
    return _sorted(by_date)


def merge_overwrite(
    existing: Sequence[DailyRecord], incoming: Sequence[DailyRecord]
) -> list[DailyRecord]:
    by_date = {day.date: _normalized(day) for day in existing}
    for day in incoming:
        by_date[day.date] = _normalized(day)
    return _sorted(by_date)


def merge_daily(
    existing: Sequence[DailyRecord],
    incoming: Sequence[DailyRecord],
    policy: MergePolicyName,
) -> list[DailyRecord]:
    """Merge an incoming breakdown into an existing one.

    Args:
        existing: Breakdown already stored on the canonical record.
        incoming: Breakdown of the report being submitted.
        policy: ``"additive"`` or ``"overwrite"``.

    Returns:
        New breakdown, sorted by date with unique dates.

    Raises:
        ValueError: If the policy name is unknown.
    """
    if policy == "additive":
        return merge_additive(existing, incoming)
    if policy == "overwrite":
        return merge_overwrite(existing, incoming)
    msg = f"Unknown merge policy: {policy}"
    raise ValueError(msg)


def merge_with_precedence(
    breakdowns: Sequence[tuple[Sequence[DailyRecord], bool]],
) -> list[DailyRecord]:
    """Combine several breakdowns of one identity without summing.

    ``breakdowns`` holds ``(days, preferred)`` pairs, oldest submission
    first. A preferred breakdown always replaces a date it covers; any
    other breakdown only fills dates nobody has claimed yet.
    """
    by_date: dict[str, DailyRecord] = {}
    for days, preferred in breakdowns:
        for day in days:
            if preferred or day.date not in by_date:
                by_date[day.date] = _normalized(day)
    return _sorted(by_date)


def merge_totals(
    existing: UsageTotals, incoming: UsageTotals, policy: MergePolicyName
) -> UsageTotals:
    """Combine report-level totals when neither side has daily entries.

    ``additive`` sums the counters; ``overwrite`` keeps the incoming ones.

    Raises:
        ValueError: If the policy name is unknown.
    """
    if policy == "additive":
        return UsageTotals(
            **{name: getattr(existing, name) + getattr(incoming, name) for name in NUMERIC_FIELDS}
        )
    if policy == "overwrite":
        return incoming.model_copy()
    msg = f"Unknown merge policy: {policy}"
    raise ValueError(msg)


def merge_date_ranges(
    existing: DateRange, incoming: DateRange, policy: MergePolicyName
) -> DateRange:
    """Span covering both ranges for ``additive``, the incoming one otherwise."""
    if policy != "additive":
        return incoming.model_copy()
    starts = [d for d in (existing.start, incoming.start) if d]
    ends = [d for d in (existing.end, incoming.end) if d]
    return DateRange(start=min(starts, default=""), end=max(ends, default=""))
