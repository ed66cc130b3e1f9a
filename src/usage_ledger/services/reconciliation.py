"""Reconciliation of incoming usage reports into canonical records."""

from __future__ import annotations

from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field
from sqlmodel import Session

from usage_ledger.core.clock import Clock, utc_now
from usage_ledger.core.config import LedgerConfig, MergePolicyName
from usage_ledger.core.errors import RecordNotFoundError
from usage_ledger.ledger import (
    AnomalyPolicy,
    RecalculatedTotals,
    create_anomaly_policy,
    merge_daily,
    merge_date_ranges,
    merge_totals,
    merge_with_precedence,
    recalculate_totals,
    union_models,
    validate_report,
)
from usage_ledger.models import (
    RECOMPUTE_PROFILE,
    CanonicalSubmission,
    DailyRecord,
    IdentityKey,
    UsageReport,
)
from usage_ledger.services.storage import LedgerStore, SubmissionRepository, TaskQueue

logger = structlog.get_logger()


class SubmitResult(BaseModel):
    """Outcome of one submission.

    ``flagged`` and ``flag_reasons`` describe the incoming report only;
    the stored record also keeps flags raised by earlier submissions.
    """

    record_id: str
    is_new: bool
    flagged: bool
    flag_reasons: list[str] = Field(default_factory=list)
    message: str


class MachineInfo(BaseModel):
    machine_id: str
    machine_name: str | None = None


class MergeResult(BaseModel):
    action: Literal["already_verified", "claimed", "merged"]
    record_id: str
    merged_records: int = 0


class ClaimStatus(BaseModel):
    """Which identity-merge action a user's records call for, if any."""

    action: Literal["claim", "merge"] | None = None
    cli_count: int = 0
    oauth_count: int = 0
    total_submissions: int = 0
    unverified_count: int = 0


class TrajectorySummary(BaseModel):
    days_active: int = 0
    start: str = ""
    end: str = ""
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_daily_cost: float = 0.0
    avg_daily_tokens: float = 0.0
    peak_date: str | None = None
    peak_cost: float = 0.0


class Trajectory(BaseModel):
    username: str
    scope: str
    points: list[DailyRecord] = Field(default_factory=list)
    summary: TrajectorySummary


def _union_reasons(existing: list[str], incoming: list[str]) -> list[str]:
    """Existing reasons followed by new ones not already present."""
    reasons = list(existing)
    for reason in incoming:
        if reason not in reasons:
            reasons.append(reason)
    return reasons


def _derived_values(derived: RecalculatedTotals, breakdown: list[DailyRecord]) -> dict[str, Any]:
    return {
        **derived.totals.model_dump(),
        "date_start": derived.date_range.start,
        "date_end": derived.date_range.end,
        "models_used": derived.models_used,
        "daily_breakdown": [day.model_dump() for day in breakdown],
    }


class ReconciliationService:
    """Owns canonical submissions: the submit transaction and admin edits.

    One identity scheme is active per deployment. The uniqueness key of a
    canonical record is ``(username, scope)`` where scope is empty, the
    machine id, or the source, depending on that scheme.
    """

    def __init__(
        self,
        config: LedgerConfig,
        store: LedgerStore,
        anomaly_policy: AnomalyPolicy | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize reconciliation service.

        Args:
            config: Ledger configuration.
            store: Storage layer.
            anomaly_policy: Overrides the policy named in config.
            clock: Source of "now" for date checks and timestamps.
        """
        self.config = config
        self.store = store
        self.anomaly_policy = anomaly_policy or create_anomaly_policy(config.anomaly)
        self.clock = clock

    def scope_for(self, identity: IdentityKey) -> str:
        return identity.scope_for(self.config.identity_scheme)

    def _is_verified(self, identity: IdentityKey) -> bool:
        return identity.source is None or identity.source in self.config.preferred_sources

    async def submit(
        self,
        report: UsageReport,
        identity: IdentityKey,
        merge_policy: MergePolicyName | None = None,
    ) -> SubmitResult:
        """Validate a report and fold it into the identity's canonical record.

        The lookup, merge, write and recompute scheduling happen in one
        transaction, retried as a whole on concurrent modification.

        Args:
            report: Incoming usage report.
            identity: Who the report belongs to.
            merge_policy: ``"additive"`` or ``"overwrite"``; defaults to the
                policy configured for the active identity scheme.

        Returns:
            Whether a record was created, and the incoming anomaly verdict.

        Raises:
            ValidationError: If the report or identity is rejected.
            ConflictError: If retries were exhausted.
            StoreUnavailableError: On store failure.
        """
        now = self.clock()
        validate_report(report, now, self.config.validation)
        scope = self.scope_for(identity)
        policy = merge_policy or self.config.default_merge_policy()
        anomaly = self.anomaly_policy.detect(report)
        incoming = merge_daily([], report.daily_breakdown, "overwrite")

        def _submit(session: Session) -> SubmitResult:
            existing = SubmissionRepository.find(session, identity.username, scope)
            if existing is None:
                if incoming:
                    values = _derived_values(recalculate_totals(incoming), incoming)
                else:
                    values = {
                        **report.totals.model_dump(),
                        "date_start": report.date_range.start,
                        "date_end": report.date_range.end,
                        "models_used": sorted(set(report.models_used)),
                        "daily_breakdown": [],
                    }
                record = CanonicalSubmission(
                    username=identity.username,
                    scope=scope,
                    department=identity.department,
                    machine_id=identity.machine_id,
                    machine_name=identity.machine_name,
                    source=identity.source,
                    submitted_at=now,
                    verified=self._is_verified(identity),
                    flagged_for_review=anomaly.flagged,
                    flag_reasons=anomaly.reasons,
                    **values,
                )
                SubmissionRepository.insert(session, record)
                record_id, is_new = record.id, True
            else:
                merged = merge_daily(existing.breakdown(), incoming, policy)
                if merged:
                    values = _derived_values(recalculate_totals(merged), merged)
                else:
                    # Totals-only reports on both sides: nothing to rebuild from
                    date_range = merge_date_ranges(existing.date_range(), report.date_range, policy)
                    models = report.models_used
                    if policy == "additive":
                        models = union_models(existing.models_used, models)
                    values = {
                        **merge_totals(existing.totals(), report.totals, policy).model_dump(),
                        "date_start": date_range.start,
                        "date_end": date_range.end,
                        "models_used": union_models(models),
                        "daily_breakdown": [],
                    }
                values.update(
                    department=identity.department or existing.department,
                    machine_name=identity.machine_name or existing.machine_name,
                    submitted_at=now,
                    verified=existing.verified or self._is_verified(identity),
                    flagged_for_review=existing.flagged_for_review or anomaly.flagged,
                    flag_reasons=_union_reasons(existing.flag_reasons, anomaly.reasons),
                )
                SubmissionRepository.update_versioned(
                    session, existing.id, existing.version, values
                )
                record_id, is_new = existing.id, False

            TaskQueue.schedule_in(session, RECOMPUTE_PROFILE, identity.username, now)
            return SubmitResult(
                record_id=record_id,
                is_new=is_new,
                flagged=anomaly.flagged,
                flag_reasons=anomaly.reasons,
                message="Submission created" if is_new else "Submission merged",
            )

        result = await self.store.transaction(_submit)
        logger.info(
            "submission_created" if result.is_new else "submission_merged",
            username=identity.username,
            scope=scope,
            policy=policy,
            record_id=result.record_id,
            flagged=result.flagged,
        )
        return result

    async def get_canonical(self, identity: IdentityKey) -> CanonicalSubmission | None:
        return await self.store.submissions.get(identity.username, self.scope_for(identity))

    async def get_by_username(self, username: str) -> list[CanonicalSubmission]:
        return await self.store.submissions.get_by_username(username)

    async def get_by_department(self, department: str) -> list[CanonicalSubmission]:
        return await self.store.submissions.get_by_department(department)

    async def machines_for(self, username: str) -> list[MachineInfo]:
        """Distinct machines a user has reported from."""
        machines: dict[str, str | None] = {}
        for record in await self.store.submissions.get_by_username(username):
            if record.machine_id:
                machines[record.machine_id] = record.machine_name or machines.get(
                    record.machine_id
                )
        return [
            MachineInfo(machine_id=m, machine_name=name) for m, name in sorted(machines.items())
        ]

    async def update_flag_status(
        self, record_id: str, flagged: bool, reason: str | None = None
    ) -> CanonicalSubmission:
        """Set or clear the review flag of a record.

        Setting appends ``reason``; clearing drops every reason.

        Raises:
            RecordNotFoundError: If no record has that id.
        """

        def _update(session: Session) -> None:
            record = session.get(CanonicalSubmission, record_id)
            if record is None:
                raise RecordNotFoundError(f"submission {record_id}")
            if flagged:
                reasons = _union_reasons(record.flag_reasons, [reason] if reason else [])
            else:
                reasons = []
            SubmissionRepository.update_versioned(
                session,
                record.id,
                record.version,
                {"flagged_for_review": flagged, "flag_reasons": reasons},
            )

        await self.store.transaction(_update)
        logger.info("flag_status_updated", record_id=record_id, flagged=flagged)
        updated = await self.store.submissions.get_by_id(record_id)
        if updated is None:
            raise RecordNotFoundError(f"submission {record_id}")
        return updated

    async def claim_status(self, username: str) -> ClaimStatus:
        """Preview what ``merge_identities`` would do for a user.

        A lone unverified record can be claimed; several records can be
        merged. Nothing is written.
        """
        records = await self.store.submissions.get_by_username(username)
        unverified = sum(1 for r in records if not r.verified)
        action: Literal["claim", "merge"] | None = None
        if len(records) > 1:
            action = "merge"
        elif unverified:
            action = "claim"
        return ClaimStatus(
            action=action,
            cli_count=sum(1 for r in records if r.source == "cli"),
            oauth_count=sum(1 for r in records if r.source == "oauth"),
            total_submissions=len(records),
            unverified_count=unverified,
        )

    async def merge_identities(self, username: str) -> MergeResult:
        """Collapse every scoped record of a user into one verified record.

        Days from a preferred source win; otherwise the earliest submitted
        record's day is kept. Records other than the base are deleted.

        Raises:
            RecordNotFoundError: If the user has no records.
        """
        now = self.clock()
        preferred = set(self.config.preferred_sources)

        def _merge(session: Session) -> MergeResult:
            rows = SubmissionRepository.find_all_for_user(session, username)
            if not rows:
                raise RecordNotFoundError(f"submissions for {username}")

            if len(rows) == 1:
                only = rows[0]
                if only.verified:
                    return MergeResult(action="already_verified", record_id=only.id)
                SubmissionRepository.update_versioned(
                    session, only.id, only.version, {"verified": True}
                )
                return MergeResult(action="claimed", record_id=only.id)

            preferred_rows = [r for r in rows if r.source in preferred]
            base = preferred_rows[0] if preferred_rows else rows[-1]
            merged = merge_with_precedence([(r.breakdown(), r.source in preferred) for r in rows])
            values = _derived_values(recalculate_totals(merged), merged)
            flag_reasons: list[str] = []
            for row in rows:
                flag_reasons = _union_reasons(flag_reasons, row.flag_reasons)
            values.update(
                submitted_at=now,
                verified=True,
                flagged_for_review=any(r.flagged_for_review for r in rows),
                flag_reasons=flag_reasons,
            )
            SubmissionRepository.update_versioned(session, base.id, base.version, values)
            SubmissionRepository.delete_ids(session, [r.id for r in rows if r.id != base.id])
            TaskQueue.schedule_in(session, RECOMPUTE_PROFILE, username, now)
            return MergeResult(action="merged", record_id=base.id, merged_records=len(rows))

        result = await self.store.transaction(_merge)
        logger.info(
            "identities_merged",
            username=username,
            action=result.action,
            record_id=result.record_id,
            merged=result.merged_records,
        )
        return result

    async def trajectory(self, username: str, scope: str = "") -> Trajectory:
        """Per-day usage series of one canonical record with a summary.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        record = await self.store.submissions.get(username, scope)
        if record is None:
            raise RecordNotFoundError(f"submission {username}/{scope or '-'}")
        points = record.breakdown()
        summary = TrajectorySummary(start=record.date_start, end=record.date_end)
        if points:
            peak = max(points, key=lambda day: (day.total_cost, day.date))
            days = len(points)
            summary = TrajectorySummary(
                days_active=days,
                start=record.date_start,
                end=record.date_end,
                total_tokens=record.total_tokens,
                total_cost=record.total_cost,
                avg_daily_cost=record.total_cost / days,
                avg_daily_tokens=record.total_tokens / days,
                peak_date=peak.date,
                peak_cost=peak.total_cost,
            )
        return Trajectory(username=username, scope=scope, points=points, summary=summary)

