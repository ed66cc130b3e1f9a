"""Roll-ups derived from per-day breakdowns and canonical records.

Everything here is a pure reduction: the same input always yields the same
output, and no value is carried over between calls.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from usage_ledger.ledger.merge import union_models
from usage_ledger.models.usage import NUMERIC_FIELDS, DailyRecord, DateRange, UsageTotals

if TYPE_CHECKING:
    from usage_ledger.models import CanonicalSubmission, ProfileSummary


class RecalculatedTotals(BaseModel):
    """Totals, date span and model set derived from one breakdown."""

    totals: UsageTotals
    date_range: DateRange
    models_used: list[str] = Field(default_factory=list)


class DepartmentStats(BaseModel):
    department: str
    total_identities: int = 0
    total_submissions: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_cost_per_identity: float = 0.0
    avg_tokens_per_identity: float = 0.0
    models_used: list[str] = Field(default_factory=list)


class ModelUsage(BaseModel):
    model: str
    count: int


class LabStats(BaseModel):
    total_identities: int = 0
    total_departments: int = 0
    total_submissions: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_cost_per_identity: float = 0.0
    avg_tokens_per_identity: float = 0.0
    model_usage: list[ModelUsage] = Field(default_factory=list)
    last_submission_at: datetime | None = None


def sum_days(breakdown: Sequence[DailyRecord]) -> UsageTotals:
    """Field-wise sum of daily entries."""
    values = {name: sum(getattr(day, name) for day in breakdown) for name in NUMERIC_FIELDS}
    values["total_cost"] = float(values["total_cost"])
    return UsageTotals(**values)


def recalculate_totals(breakdown: Sequence[DailyRecord]) -> RecalculatedTotals:
    """Derive totals, date range and models from a breakdown.

    Args:
        breakdown: Daily entries in any order.

    Returns:
        Summed totals, ``{min date, max date}`` (empty strings when there
        are no days) and the union of every day's models.
    """
    dates = sorted(day.date for day in breakdown)
    return RecalculatedTotals(
        totals=sum_days(breakdown),
        date_range=DateRange(start=dates[0], end=dates[-1]) if dates else DateRange(),
        models_used=union_models(*(day.models_used for day in breakdown)),
    )


def filter_by_date_range(
    breakdown: Sequence[DailyRecord], start: str, end: str
) -> list[DailyRecord]:
    """Entries with ``start <= date <= end``."""
    window = DateRange(start=start, end=end)
    return [day for day in breakdown if window.contains(day.date)]


def department_stats(
    department: str, submissions: Sequence[CanonicalSubmission]
) -> DepartmentStats:
    """Reduce the canonical records of one department.

    Identities are distinct usernames, so a user reporting from several
    machines counts once. Averages are 0 for an empty department.
    """
    records = [s for s in submissions if s.department == department]
    identities = {s.username for s in records}
    total_tokens = sum(s.total_tokens for s in records)
    total_cost = float(sum(s.total_cost for s in records))
    count = len(identities)
    return DepartmentStats(
        department=department,
        total_identities=identities,
        total_submissions=len(records),
        total_tokens=total_tokens,
        total_cost=total_cost,
        avg_cost_per_identity=total_cost / identities if identities else 0.0,
        avg_tokens_per_identity=total_tokens / identities if identities else 0.0,
        models_used=union_models(*(s.models_used for s in records)),
    )


def lab_stats(
    profiles: Sequence[ProfileSummary], submissions: Sequence[CanonicalSubmission]
) -> LabStats:
    """Lab-wide totals from profiles plus a model histogram from records.

    The histogram counts how many canonical records used each model,
    highest count first and model name breaking ties.
    """
    usage = Counter(model for s in submissions for model in set(s.models_used))
    histogram = sorted(usage.items(), key=lambda item: (-item[1], item[0]))
    timestamps = [s.submitted_at for s in submissions]
    timestamps.extend(p.last_submission for p in profiles)
    identities = len(profiles)
    total_tokens = sum(p.total_tokens for p in profiles)
    total_cost = float(sum(p.total_cost for p in profiles))
    return LabStats(
        total_identities=identities,
        total_departments=len({p.department for p in profiles if p.department}),
        total_submissions=sum(p.total_submissions for p in profiles),
        total_tokens=total_tokens,
        total_cost=total_cost,
        avg_cost_per_identity=total_cost / identities if identities else 0.0,
        avg_tokens_per_identity=total_tokens / identities if identities else 0.0,
        model_usage=[ModelUsage(model=model, count=count) for model, count in histogram],
        last_submission_at=max(timestamps) if timestamps else None,
    )
