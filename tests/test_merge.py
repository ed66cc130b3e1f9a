"""Tests for merging daily breakdowns.

Additive merging is the policy for a different machine contributing usage
for the same identity; overwrite is the policy for the same machine or
source re-uploading a corrected report.
"""

import pytest
from factories import make_day, make_report

from usage_ledger.ledger.merge import (
    merge_additive,
    merge_daily,
    merge_date_ranges,
    merge_overwrite,
    merge_totals,
    merge_with_precedence,
    union_models,
)
from usage_ledger.models import DateRange


def _by_date(days):
    return {d.date: d for d in days}


class TestAdditiveMerge:
    """Multi-machine aggregation sums overlapping days."""

    def test_overlapping_day_sums_every_field(self):
        existing = [make_day("2025-01-05", 1000, 500, 100, 50, cost=2.5, models=("sonnet",))]
        incoming = [make_day("2025-01-05", 600, 300, 50, 50, cost=1.5, models=("opus",))]

        merged = merge_daily(existing, incoming, "additive")

        assert len(merged) == 1
        day = merged[0]
        assert day.total_tokens == 2650
        assert day.input_tokens == 1600
        assert day.output_tokens == 800
        assert day.cache_creation_tokens == 150
        assert day.cache_read_tokens == 100
        assert day.total_cost == 4.0
        assert day.models_used == ["opus", "sonnet"]

    def test_disjoint_days_copied_and_sorted(self):
        existing = [make_day("2025-01-07"), make_day("2025-01-05")]
        incoming = [make_day("2025-01-06")]
        merged = merge_additive(existing, incoming)
        assert [d.date for d in merged] == ["2025-01-05", "2025-01-06", "2025-01-07"]
        assert all(d.total_tokens == 1000 for d in merged)

    def test_commutative_and_associative(self):
        a = [make_day("2025-01-01", cost=0.5, models=("a",)), make_day("2025-01-02", cost=0.25)]
        b = [make_day("2025-01-02", cost=1.0, models=("b",)), make_day("2025-01-03")]
        c = [make_day("2025-01-01", cost=2.0, models=("c",)), make_day("2025-01-03", cost=0.5)]

        left = merge_additive(a, merge_additive(b, c))
        right = merge_additive(merge_additive(a, b), c)
        swapped = merge_additive(merge_additive(c, b), a)

        assert left == right == swapped
        assert _by_date(left)["2025-01-01"].models_used == ["a", "c"]
        assert _by_date(left)["2025-01-01"].total_cost == 2.5
        assert _by_date(left)["2025-01-02"].total_tokens == 2000

    def test_inputs_left_unchanged(self):
        existing = [make_day("2025-01-05")]
        merge_additive(existing, [make_day("2025-01-05")])
        assert existing[0].total_tokens == 1000


class TestOverwriteMerge:
    """Same-source correction replaces overlapping days."""

    def test_incoming_replaces_overlapping_day(self):
        existing = [make_day("2025-01-05", cost=9.0), make_day("2025-01-06", cost=3.0)]
        incoming = [make_day("2025-01-06", 100, 0, 0, 0, cost=0.5, models=("haiku",))]

        merged = _by_date(merge_overwrite(existing, incoming))

        assert merged["2025-01-06"].total_tokens == 100
        assert merged["2025-01-06"].total_cost == 0.5
        assert merged["2025-01-06"].models_used == ["haiku"]
        assert merged["2025-01-05"].total_cost == 9.0

    def test_policies_disagree_on_overlap(self):
        existing = [make_day("2025-01-05")]
        incoming = [make_day("2025-01-05")]
        assert merge_daily(existing, incoming, "additive")[0].total_tokens == 2000
        assert merge_daily(existing, incoming, "overwrite")[0].total_tokens == 1000

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError, match="Unknown merge policy"):
            merge_daily([], [], "average")  # type: ignore[arg-type]


class TestPrecedenceMerge:
    """Administrative merge: preferred source wins, otherwise first seen."""

    def test_preferred_breakdown_overrides(self):
        older_cli = [make_day("2025-01-05", cost=1.0), make_day("2025-01-06", cost=1.0)]
        oauth = [make_day("2025-01-06", cost=5.0)]
        newer_cli = [make_day("2025-01-05", cost=7.0), make_day("2025-01-07", cost=2.0)]

        merged = _by_date(
            merge_with_precedence([(older_cli, False), (oauth, True), (newer_cli, False)])
        )

        assert merged["2025-01-05"].total_cost == 1.0
        assert merged["2025-01-06"].total_cost == 5.0
        assert merged["2025-01-07"].total_cost == 2.0

    def test_union_models_sorted_and_unique(self):
        assert union_models(["b", "a"], ["a", "c"]) == ["a", "b", "c"]


class TestTotalsMerge:
    """Report-level totals of records without daily entries."""

    def test_additive_sums_totals(self):
        first = make_report(make_day("2025-01-05")).totals
        second = make_report(make_day("2025-01-06", 300, 150, 25, 25, cost=2.0)).totals

        merged = merge_totals(first, second, "additive")

        assert merged.total_tokens == 1500
        assert merged.cache_read_tokens == 75
        assert merged.total_cost == 3.0

    def test_overwrite_keeps_incoming(self):
        first = make_report(make_day("2025-01-05")).totals
        second = make_report(make_day("2025-01-06", 300, 150, 25, 25, cost=2.0)).totals
        assert merge_totals(first, second, "overwrite") == second

    def test_unknown_policy(self):
        totals = make_report(make_day("2025-01-05")).totals
        with pytest.raises(ValueError, match="Unknown merge policy"):
            merge_totals(totals, totals, "replace")

    def test_additive_range_spans_both(self):
        merged = merge_date_ranges(
            DateRange(start="2025-01-05", end="2025-01-06"),
            DateRange(start="2025-01-02", end="2025-01-04"),
            "additive",
        )
        assert (merged.start, merged.end) == ("2025-01-02", "2025-01-06")

    def test_empty_range_is_ignored(self):
        merged = merge_date_ranges(
            DateRange(), DateRange(start="2025-01-02", end="2025-01-04"), "additive"
        )
        assert (merged.start, merged.end) == ("2025-01-02", "2025-01-04")
