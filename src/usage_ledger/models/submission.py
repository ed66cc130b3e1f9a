import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from usage_ledger.core.clock import utc_now
from usage_ledger.models.columns import JSONText
from usage_ledger.models.usage import DailyRecord, DateRange, UsageTotals


class CanonicalSubmission(SQLModel, table=True):
    """The merged usage record for one identity and scope.

    Totals, date range and model list are always derived from
    ``daily_breakdown``; ``version`` guards the read-merge-write.
    """

    __tablename__ = "canonical_submission"
    __table_args__ = (UniqueConstraint("username", "scope", name="uq_submission_identity"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    username: str = Field(index=True)
    scope: str = ""
    department: str | None = None
    machine_id: str | None = None
    machine_name: str | None = None
    source: str | None = None
    input_tokens: int = Field(default=0, sa_type=BigInteger)
    output_tokens: int = Field(default=0, sa_type=BigInteger)
    cache_creation_tokens: int = Field(default=0, sa_type=BigInteger)
    cache_read_tokens: int = Field(default=0, sa_type=BigInteger)
    total_tokens: int = Field(default=0, sa_type=BigInteger)
    total_cost: float = 0.0
    date_start: str = ""
    date_end: str = ""
    models_used: list[str] = Field(default_factory=list, sa_column=Column(JSONText))
    daily_breakdown: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONText))
    submitted_at: datetime = Field(default_factory=utc_now)
    verified: bool = True
    flagged_for_review: bool = False
    flag_reasons: list[str] = Field(default_factory=list, sa_column=Column(JSONText))
    version: int = 1

    def breakdown(self) -> list[DailyRecord]:
        return [DailyRecord.model_validate(day) for day in self.daily_breakdown]

    def totals(self) -> UsageTotals:
        return UsageTotals(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens,
            total_tokens=self.total_tokens,
            total_cost=self.total_cost,
        )

    def date_range(self) -> DateRange:
        return DateRange(start=self.date_start, end=self.date_end)
