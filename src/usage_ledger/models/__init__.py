from usage_ledger.models.profile import ProfileSummary
from usage_ledger.models.submission import CanonicalSubmission
from usage_ledger.models.task import RECOMPUTE_PROFILE, RecomputeTask
from usage_ledger.models.usage import (
    NUMERIC_FIELDS,
    DailyRecord,
    DateRange,
    IdentityKey,
    TokenCounts,
    UsageReport,
    UsageTotals,
)

__all__ = [
    "NUMERIC_FIELDS",
    "RECOMPUTE_PROFILE",
    "CanonicalSubmission",
    "DailyRecord",
    "DateRange",
    "IdentityKey",
    "ProfileSummary",
    "RecomputeTask",
    "TokenCounts",
    "UsageReport",
    "UsageTotals",
]
