"""Pure reconciliation core: validation, anomaly flags, merging, roll-ups."""

from usage_ledger.ledger.aggregate import (
    DepartmentStats,
    LabStats,
    ModelUsage,
    RecalculatedTotals,
    department_stats,
    filter_by_date_range,
    lab_stats,
    recalculate_totals,
    sum_days,
)
from usage_ledger.ledger.anomaly import (
    AnomalyPolicy,
    AnomalyResult,
    LabAnomalyPolicy,
    PublicAnomalyPolicy,
    create_anomaly_policy,
)
from usage_ledger.ledger.merge import (
    merge_daily,
    merge_date_ranges,
    merge_totals,
    merge_with_precedence,
    union_models,
)
from usage_ledger.ledger.validation import validate_report, validate_token_math

__all__ = [
    "AnomalyPolicy",
    "AnomalyResult",
    "DepartmentStats",
    "LabAnomalyPolicy",
    "LabStats",
    "ModelUsage",
    "PublicAnomalyPolicy",
    "RecalculatedTotals",
    "create_anomaly_policy",
    "department_stats",
    "filter_by_date_range",
    "lab_stats",
    "merge_daily",
    "merge_date_ranges",
    "merge_totals",
    "merge_with_precedence",
    "recalculate_totals",
    "sum_days",
    "union_models",
    "validate_report",
    "validate_token_math",
]
