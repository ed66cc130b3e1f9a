"""Tests for anomaly policies."""

from factories import make_day, make_report

from usage_ledger.core.config import (
    AnomalyConfig,
    LabAnomalyThresholds,
    PublicAnomalyThresholds,
)
from usage_ledger.ledger.anomaly import (
    AnomalyPolicy,
    LabAnomalyPolicy,
    PublicAnomalyPolicy,
    create_anomaly_policy,
)


def _heavy_report():
    """150M tokens and $75,000 on a single day."""
    day = make_day(
        "2025-01-05",
        input_tokens=100_000_000,
        output_tokens=50_000_000,
        cache_creation_tokens=0,
        cache_read_tokens=0,
        cost=75_000.0,
    )
    return make_report(day)


class TestLabPolicy:
    """Tests for the lenient totals-only policy."""

    def test_high_tokens_and_cost_give_two_reasons(self):
        result = LabAnomalyPolicy().detect(_heavy_report())
        assert result.flagged is True
        assert len(result.reasons) == 2
        assert result.reasons[0] == "Unusually high token count: 150,000,000"
        assert result.reasons[1] == "Unusually high cost: $75000.00"

    def test_normal_report_not_flagged(self):
        result = LabAnomalyPolicy().detect(make_report(make_day("2025-01-05", cost=12.5)))
        assert result.flagged is False
        assert result.reasons == []

    def test_thresholds_are_exclusive(self):
        """Exactly hitting a threshold is not anomalous."""
        policy = LabAnomalyPolicy(LabAnomalyThresholds(max_total_tokens=1000, max_total_cost=1.0))
        assert policy.detect(make_report(make_day("2025-01-05", cost=1.0))).flagged is False

    def test_only_cost_exceeded(self):
        result = LabAnomalyPolicy().detect(make_report(make_day("2025-01-05", cost=1500.0)))
        assert result.reasons == ["Unusually high cost: $1500.00"]


class TestPublicPolicy:
    """Tests for the strict per-day policy."""

    def test_daily_cost_and_average_flagged(self):
        day = make_day("2025-01-05", input_tokens=10_000_000, cost=6000.0)
        result = PublicAnomalyPolicy().detect(make_report(day))
        assert result.flagged is True
        assert any(r.startswith("Daily cost of $6000.00 on 2025-01-05") for r in result.reasons)
        assert any(r.startswith("Average daily cost of $6000.00") for r in result.reasons)

    def test_daily_tokens_flagged(self):
        day = make_day("2025-01-05", input_tokens=300_000_000, cost=600.0)
        result = PublicAnomalyPolicy().detect(make_report(day))
        assert result.reasons == [
            "Daily tokens of 300,000,400 on 2025-01-05 exceeds typical limits"
        ]

    def test_cost_per_token_ratio_bounds(self):
        """Flags ratios below 1e-7 or above 0.1 dollars per token."""
        cheap = make_report(make_day("2025-01-05", input_tokens=100_000_000, cost=0.01))
        expensive = make_report(make_day("2025-01-05", cost=500.0))
        normal = make_report(make_day("2025-01-05", cost=0.01))
        assert any("Cost per token" in r for r in PublicAnomalyPolicy().detect(cheap).reasons)
        assert any("Cost per token" in r for r in PublicAnomalyPolicy().detect(expensive).reasons)
        assert PublicAnomalyPolicy().detect(normal).flagged is False

    def test_lab_sized_report_within_public_limits(self):
        """The lab heavy report is unremarkable per day for the public policy."""
        policy = PublicAnomalyPolicy(PublicAnomalyThresholds(max_daily_cost=100_000))
        result = policy.detect(_heavy_report())
        assert result.reasons == ["Average daily cost of $75000.00 is unusually high"]


class TestFactory:
    def test_default_is_lab(self):
        policy = create_anomaly_policy(AnomalyConfig())
        assert isinstance(policy, LabAnomalyPolicy)
        assert isinstance(policy, AnomalyPolicy)

    def test_public_uses_configured_thresholds(self):
        config = AnomalyConfig(policy="public", public=PublicAnomalyThresholds(max_daily_cost=1))
        policy = create_anomaly_policy(config)
        assert isinstance(policy, PublicAnomalyPolicy)
        assert policy.thresholds.max_daily_cost == 1
