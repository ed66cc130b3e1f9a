"""Tests for parsing untyped usage reports."""

import json

import pytest

from usage_ledger.core.errors import ValidationError
from usage_ledger.services.ingest import load_report, parse_usage_report

TOTALS = {
    "inputTokens": 1200,
    "outputTokens": 600,
    "cacheCreationTokens": 100,
    "cacheReadTokens": 100,
    "totalTokens": 2000,
    "totalCost": 2.5,
}


def _day(date, **extra):
    day = {
        "date": date,
        "inputTokens": 600,
        "outputTokens": 300,
        "cacheCreationTokens": 50,
        "cacheReadTokens": 50,
        "totalTokens": 1000,
        "totalCost": 1.25,
    }
    day.update(extra)
    return day


class TestCcusageFormat:
    """Tests for the ccusage ``cc.json`` shape."""

    def test_derives_range_and_models(self):
        data = {
            "daily": [
                _day("2025-01-06", modelsUsed=["claude-opus-4"]),
                _day("2025-01-05", modelsUsed=["claude-sonnet-4"]),
            ],
            "totals": TOTALS,
        }
        report = parse_usage_report(data)
        assert report.date_range.start == "2025-01-05"
        assert report.date_range.end == "2025-01-06"
        assert report.models_used == ["claude-opus-4", "claude-sonnet-4"]
        assert report.totals.total_tokens == 2000
        assert report.daily_breakdown[0].total_cost == 1.25

    def test_models_from_model_keys_or_breakdowns(self):
        data = {
            "daily": [
                _day("2025-01-05", models={"claude-sonnet-4": {"cost": 1.0}}),
                _day("2025-01-06", modelBreakdowns=[{"modelName": "claude-haiku-3"}]),
            ],
            "totals": TOTALS,
        }
        report = parse_usage_report(data)
        assert report.daily_breakdown[0].models_used == ["claude-sonnet-4"]
        assert report.daily_breakdown[1].models_used == ["claude-haiku-3"]

    def test_missing_totals_field(self):
        totals = dict(TOTALS)
        del totals["totalCost"]
        with pytest.raises(ValidationError, match="totals missing totalCost"):
            parse_usage_report({"daily": [_day("2025-01-05")], "totals": totals})

    def test_missing_section(self):
        with pytest.raises(ValidationError, match="missing 'daily' or 'totals'"):
            parse_usage_report({"daily": [_day("2025-01-05")]})

    def test_empty_daily(self):
        with pytest.raises(ValidationError, match="no daily data"):
            parse_usage_report({"daily": [], "totals": TOTALS})

    def test_wrong_value_type(self):
        data = {"daily": [_day("2025-01-05", totalTokens="lots")], "totals": TOTALS}
        with pytest.raises(ValidationError, match="Invalid usage report"):
            parse_usage_report(data)


class TestNormalizedFormat:
    def test_accepts_normalized_shape(self):
        data = {
            "totals": TOTALS,
            "dateRange": {"start": "2025-01-05", "end": "2025-01-06"},
            "modelsUsed": ["claude-sonnet-4"],
            "dailyBreakdown": [_day("2025-01-05", modelsUsed=["claude-sonnet-4"])],
        }
        report = parse_usage_report(data)
        assert report.daily_breakdown[0].models_used == ["claude-sonnet-4"]

    def test_not_an_object(self):
        with pytest.raises(ValidationError, match="expected a JSON object"):
            parse_usage_report([1, 2, 3])


class TestLoadReport:
    def test_reads_file(self, tmp_path):
        path = tmp_path / "cc.json"
        path.write_text(json.dumps({"daily": [_day("2025-01-05")], "totals": TOTALS}))
        assert load_report(path).daily_breakdown[0].date == "2025-01-05"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "cc.json"
        path.write_text("{not json")
        with pytest.raises(ValidationError, match="not valid JSON"):
            load_report(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_report(tmp_path / "absent.json")
