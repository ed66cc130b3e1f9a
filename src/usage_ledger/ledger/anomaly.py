"""Anomaly policies that flag, but never reject, a usage report."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from usage_ledger.core.config import LabAnomalyThresholds, PublicAnomalyThresholds

if TYPE_CHECKING:
    from usage_ledger.core.config import AnomalyConfig
    from usage_ledger.models.usage import UsageReport


class AnomalyResult(BaseModel):
    """Verdict of an anomaly policy."""

    flagged: bool = False
    reasons: list[str] = Field(default_factory=list)


@runtime_checkable
class AnomalyPolicy(Protocol):
    """Protocol for anomaly detectors.

    Implementations inspect a report that already passed validation and
    return the reasons it deserves manual review, if any.
    """

    name: str

    def detect(self, report: UsageReport) -> AnomalyResult:
        """Inspect a report.

        Args:
            report: A validated usage report.

        Returns:
            Result with ``flagged`` set when at least one reason applies.
        """
        ...


class LabAnomalyPolicy:
    """Lenient totals-only checks used for lab researcher submissions."""

    name = "lab"

    def __init__(self, thresholds: LabAnomalyThresholds | None = None) -> None:
        self.thresholds = thresholds or LabAnomalyThresholds()

    def detect(self, report: UsageReport) -> AnomalyResult:
        totals = report.totals
        reasons: list[str] = []
        if totals.total_tokens > self.thresholds.max_total_tokens:
            reasons.append(f"Unusually high token count: {totals.total_tokens:,}")
        if totals.total_cost > self.thresholds.max_total_cost:
            reasons.append(f"Unusually high cost: ${totals.total_cost:.2f}")
        return AnomalyResult(flagged=bool(reasons), reasons=reasons)


class PublicAnomalyPolicy:
    """Stricter per-day and ratio checks used for public submissions."""

    name = "public"

    def __init__(self, thresholds: PublicAnomalyThresholds | None = None) -> None:
        self.thresholds = thresholds or PublicAnomalyThresholds()

    def detect(self, report: UsageReport) -> AnomalyResult:
        limits = self.thresholds
        reasons: list[str] = []

        for day in report.daily_breakdown:
            if day.total_cost > limits.max_daily_cost:
                reasons.append(
                    f"Daily cost of ${day.total_cost:.2f} on {day.date} exceeds typical limits"
                )
            if day.total_tokens > limits.max_daily_tokens:
                reasons.append(
                    f"Daily tokens of {day.total_tokens:,} on {day.date} exceeds typical limits"
                )

        days_active = len(report.daily_breakdown)
        if days_active:
            avg_daily_cost = report.totals.total_cost / days_active
            if avg_daily_cost > limits.max_average_daily_cost:
                reasons.append(f"Average daily cost of ${avg_daily_cost:.2f} is unusually high")

        if report.totals.total_tokens > 0:
            ratio = report.totals.total_cost / report.totals.total_tokens
            if not limits.min_cost_per_token <= ratio <= limits.max_cost_per_token:
                reasons.append(f"Cost per token ratio of {ratio:.2e} is unrealistic")

        return AnomalyResult(flagged=bool(reasons), reasons=reasons)


def create_anomaly_policy(config: AnomalyConfig) -> AnomalyPolicy:
    """Create the anomaly policy named in config.

    Args:
        config: Anomaly configuration.

    Returns:
        Configured anomaly policy.
    """
    if config.policy == "public":
        return PublicAnomalyPolicy(config.public)
    return LabAnomalyPolicy(config.lab)
