"""Read-only rankings and statistics over canonical records and profiles."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, Field

from usage_ledger.core.config import LedgerConfig
from usage_ledger.core.errors import ValidationError
from usage_ledger.ledger import (
    DepartmentStats,
    LabStats,
    department_stats,
    filter_by_date_range,
    lab_stats,
    sum_days,
)
from usage_ledger.ledger.validation import is_valid_date
from usage_ledger.models import CanonicalSubmission, ProfileSummary, UsageTotals
from usage_ledger.services.storage import LedgerStore, SortMetric, SubmissionRepository

logger = structlog.get_logger()


class LeaderboardEntry(BaseModel):
    rank: int
    record_id: str
    username: str
    scope: str = ""
    department: str | None = None
    machine_name: str | None = None
    source: str | None = None
    totals: UsageTotals
    date_start: str = ""
    date_end: str = ""
    models_used: list[str] = Field(default_factory=list)
    flagged: bool = False
    verified: bool = True
    submitted_at: datetime

    @classmethod
    def from_record(
        cls, rank: int, record: CanonicalSubmission, totals: UsageTotals | None = None
    ) -> LeaderboardEntry:
        return cls(
            rank=rank,
            record_id=record.id,
            username=record.username,
            scope=record.scope,
            department=record.department,
            machine_name=record.machine_name,
            source=record.source,
            totals=totals or record.totals(),
            date_start=record.date_start,
            date_end=record.date_end,
            models_used=list(record.models_used),
            flagged=record.flagged_for_review,
            verified=record.verified,
            submitted_at=record.submitted_at,
        )


class LeaderboardPage(BaseModel):
    """One page of the all-time leaderboard; ``page`` is zero-based."""

    items: list[LeaderboardEntry] = Field(default_factory=list)
    page: int = 0
    page_size: int
    total: int = 0
    total_pages: int = 0
    has_more: bool = False


class RangeLeaderboard(BaseModel):
    """Leaderboard whose totals only count days inside ``[start, end]``."""

    start: str
    end: str
    sort_by: SortMetric = "cost"
    items: list[LeaderboardEntry] = Field(default_factory=list)


@dataclass(frozen=True)
class WindowTotals:
    """Totals of one record restricted to a date window."""

    record: CanonicalSubmission
    totals: UsageTotals
    days: int


class TimelineEntry(BaseModel):
    username: str
    scope: str = ""
    department: str | None = None
    total_cost: float = 0.0
    total_tokens: int = 0
    submitted_at: datetime
    date_start: str = ""
    date_end: str = ""


@runtime_checkable
class DailyWindowIndex(Protocol):
    """Source of per-record totals over an arbitrary date window.

    The full-scan implementation re-reads every record; a pre-aggregated
    per-date index can replace it without changing the leaderboard.
    """

    async def window_totals(
        self, start: str, end: str, include_flagged: bool = False
    ) -> list[WindowTotals]:
        """Totals of every record with at least one day in the window.

        Args:
            start: First date of the window, inclusive.
            end: Last date of the window, inclusive.
            include_flagged: Also consider records flagged for review.

        Returns:
            One entry per record that has days in the window.
        """
        ...


class FullScanWindowIndex:
    """Scans all records in batches and re-sums their in-window days."""

    def __init__(self, submissions: SubmissionRepository, batch_size: int = 100) -> None:
        self.submissions = submissions
        self.batch_size = batch_size

    async def window_totals(
        self, start: str, end: str, include_flagged: bool = False
    ) -> list[WindowTotals]:
        results: list[WindowTotals] = []
        scanned = 0
        async for batch in self.submissions.iter_batches(self.batch_size):
            scanned += len(batch)
            for record in batch:
                if record.flagged_for_review and not include_flagged:
                    continue
                days = filter_by_date_range(record.breakdown(), start, end)
                if not days:
                    continue
                results.append(WindowTotals(record=record, totals=sum_days(days), days=len(days)))
        logger.debug("window_scan", start=start, end=end, scanned=scanned, matched=len(results))
        return results


def _metric(totals: UsageTotals, sort_by: SortMetric) -> float:
    return totals.total_tokens if sort_by == "tokens" else totals.total_cost


class RankingService:
    """Leaderboards, timelines and statistics.

    Reads persisted canonical records and profiles only. Ties on the sort
    metric are broken by username, then scope, both ascending.
    """

    def __init__(
        self,
        config: LedgerConfig,
        store: LedgerStore,
        window_index: DailyWindowIndex | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.window_index = window_index or FullScanWindowIndex(
            store.submissions, config.leaderboard.scan_batch_size
        )

    async def leaderboard(
        self,
        sort_by: SortMetric = "cost",
        page: int = 0,
        page_size: int | None = None,
        include_flagged: bool = False,
    ) -> LeaderboardPage:
        """All-time leaderboard page.

        Args:
            sort_by: ``"cost"`` or ``"tokens"``, highest first.
            page: Zero-based page number.
            page_size: Rows per page, between 1 and ``max_page_size``.
            include_flagged: Keep records flagged for review.
        """
        settings = self.config.leaderboard
        size = max(min(page_size or settings.default_page_size, settings.max_page_size), 1)
        page = max(page, 0)
        offset = page * size
        rows, total = await self.store.submissions.leaderboard_page(
            sort_by, offset, size, include_flagged
        )
        items = [
            LeaderboardEntry.from_record(offset + index + 1, record)
            for index, record in enumerate(rows)
        ]
        return LeaderboardPage(
            items=items,
            page=page,
            page_size=size,
            total=total,
            total_pages=math.ceil(total / size),
            has_more=offset + len(items) < total,
        )

    async def leaderboard_by_date_range(
        self,
        start: str,
        end: str,
        sort_by: SortMetric = "cost",
        limit: int | None = None,
        include_flagged: bool = False,
    ) -> RangeLeaderboard:
        """Leaderboard over ``[start, end]`` using only in-window days.

        Records without days in the window are left out.

        Raises:
            ValidationError: If a bound is malformed or ``start > end``.
        """
        for value in (start, end):
            if not is_valid_date(value):
                raise ValidationError(f"Invalid date format: {value}. Expected YYYY-MM-DD")
        if start > end:
            raise ValidationError(f"Invalid date range: {start} is after {end}")

        settings = self.config.leaderboard
        cap = max(min(limit or settings.default_range_limit, settings.max_range_limit), 1)
        windows = await self.window_index.window_totals(start, end, include_flagged)
        windows.sort(
            key=lambda w: (-_metric(w.totals, sort_by), w.record.username, w.record.scope)
        )
        items = [
            LeaderboardEntry.from_record(index + 1, w.record, w.totals)
            for index, w in enumerate(windows[:cap])
        ]
        return RangeLeaderboard(start=start, end=end, sort_by=sort_by, items=items)

    async def activity_timeline(self, limit: int | None = None) -> list[TimelineEntry]:
        """Most recently submitted records, newest first."""
        limit = max(limit or self.config.leaderboard.timeline_limit, 1)
        rows = await self.store.submissions.most_recent(limit)
        return [
            TimelineEntry(
                username=r.username,
                scope=r.scope,
                department=r.department,
                total_cost=r.total_cost,
                total_tokens=r.total_tokens,
                submitted_at=r.submitted_at,
                date_start=r.date_start,
                date_end=r.date_end,
            )
            for r in rows
        ]

    async def flagged(self, limit: int = 50) -> list[CanonicalSubmission]:
        """Review queue: flagged records, most recent first."""
        cap = min(max(limit, 1), self.config.leaderboard.max_flagged_limit)
        return await self.store.submissions.most_recent(cap, flagged_only=True)

    async def top_profiles(self, limit: int = 10) -> list[ProfileSummary]:
        return await self.store.profiles.top_by_cost(limit)

    async def department_stats(self, department: str) -> DepartmentStats:
        records = await self.store.submissions.get_by_department(department)
        return department_stats(department, records)

    async def lab_stats(self) -> LabStats:
        profiles = await self.store.profiles.get_all()
        submissions = await self.store.submissions.get_all()
        return lab_stats(profiles, submissions)
