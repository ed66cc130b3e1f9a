"""Usage report value types.

Dates are kept as ISO ``YYYY-MM-DD`` strings; zero padding makes string
comparison match calendar order.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from usage_ledger.core.errors import ValidationError

NUMERIC_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_creation_tokens",
    "cache_read_tokens",
    "total_tokens",
    "total_cost",
)

TOKEN_COMPONENT_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_creation_tokens",
    "cache_read_tokens",
)

Source = Literal["cli", "oauth"]


class UsageModel(BaseModel):
    """Base for report types; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenCounts(UsageModel):
    """Token and cost counters shared by totals and daily entries."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0

    def component_sum(self) -> int:
        """Sum of input, output and both cache token counters."""
        return sum(getattr(self, name) for name in TOKEN_COMPONENT_FIELDS)

    def numeric_values(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in NUMERIC_FIELDS}


class UsageTotals(TokenCounts):
    """Aggregate counters of a report or canonical record."""


class DailyRecord(TokenCounts):
    """Usage for one calendar date."""

    date: str
    models_used: list[str] = Field(default_factory=list)


class DateRange(UsageModel):
    """Inclusive date span; empty strings when there are no days."""

    start: str = ""
    end: str = ""

    def contains(self, day: str) -> bool:
        return self.start <= day <= self.end


class UsageReport(UsageModel):
    """One client's submission, before reconciliation."""

    totals: UsageTotals
    date_range: DateRange
    models_used: list[str] = Field(default_factory=list)
    daily_breakdown: list[DailyRecord] = Field(default_factory=list)

    def all_dates(self) -> list[str]:
        """Every date the report mentions: range endpoints then daily dates."""
        dates = [d for d in (self.date_range.start, self.date_range.end) if d]
        dates.extend(day.date for day in self.daily_breakdown)
        return dates


class IdentityKey(BaseModel):
    """Who a report belongs to, plus the optional scoping dimensions."""

    username: str = Field(..., min_length=1)
    department: str | None = None
    machine_id: str | None = None
    machine_name: str | None = None
    source: Source | None = None

    def scope_for(self, scheme: str) -> str:
        """Secondary uniqueness value for an identity scheme.

        Raises:
            ValidationError: If the scheme needs a dimension this key lacks.
        """
        if scheme == "username":
            return ""
        if scheme == "machine":
            if not self.machine_id:
                raise ValidationError("Invalid usage report: machine id is required")
            return self.machine_id
        if scheme == "source":
            if not self.source:
                raise ValidationError("Invalid usage report: source is required")
            return self.source
        raise ValidationError(f"Invalid usage report: unknown identity scheme '{scheme}'")
