"""Profile recompute: rebuild a ProfileSummary from canonical records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import structlog
from sqlmodel import Session

from usage_ledger.core.clock import Clock, utc_now
from usage_ledger.models import CanonicalSubmission, ProfileSummary
from usage_ledger.services.storage import LedgerStore, ProfileRepository, SubmissionRepository

logger = structlog.get_logger()


@dataclass
class RecomputeResult:
    """Outcome of a recompute; ``success`` is False when there was nothing to do."""

    success: bool
    action: Literal["created", "updated"] | None = None
    reason: str | None = None
    profile: ProfileSummary | None = None


def summarize_records(username: str, rows: list[CanonicalSubmission]) -> dict[str, Any]:
    """Derived profile fields for a non-empty set of one user's records."""
    latest = max(rows, key=lambda r: (r.submitted_at, r.scope))
    return {
        "username": username,
        "department": latest.department,
        "machines": sorted({r.machine_id for r in rows if r.machine_id}),
        "sources": sorted({r.source for r in rows if r.source}),
        "total_submissions": len(rows),
        "total_tokens": sum(r.total_tokens for r in rows),
        "total_cost": float(sum(r.total_cost for r in sorted(rows, key=lambda r: r.scope))),
        "first_submission": min(r.submitted_at for r in rows),
        "last_submission": max(r.submitted_at for r in rows),
    }


class ProfileService:
    """Keeps each ProfileSummary a pure function of its canonical records."""

    def __init__(self, store: LedgerStore, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock

    async def recompute_profile(self, username: str) -> RecomputeResult:
        """Re-derive one identity's profile from scratch.

        Safe to run any number of times and in any order: the result only
        depends on the records stored when it runs.

        Args:
            username: Identity to recompute.

        Returns:
            The upserted profile, or ``success=False`` when the identity has
            no canonical records.
        """
        now = self.clock()

        def _recompute(session: Session) -> RecomputeResult:
            rows = SubmissionRepository.find_all_for_user(session, username)
            if not rows:
                return RecomputeResult(success=False, reason="No submission found")
            values = summarize_records(username, rows)
            if ProfileRepository.find(session, username) is None:
                values["created_at"] = now
            action = ProfileRepository.upsert(session, values)
            return RecomputeResult(success=True, action=action)

        result = await self.store.transaction(_recompute)
        if not result.success:
            logger.info("profile_recompute_skipped", username=username, reason=result.reason)
            return result

        result.profile = await self.store.profiles.get(username)
        logger.info("profile_recomputed", username=username, action=result.action)
        return result
