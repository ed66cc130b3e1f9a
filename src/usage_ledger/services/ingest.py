"""Parsing of untyped usage reports.

Two shapes are accepted:

- ccusage export (``cc.json``): ``{"daily": [...], "totals": {...}}``. The
  date range and model list are derived from the daily entries; models
  come from ``modelsUsed``, the keys of ``models``, or the names in
  ``modelBreakdowns``.
- Normalized: ``{"totals", "dateRange", "modelsUsed", "dailyBreakdown"}``.

Format checks on the values themselves (dates, arithmetic, signs) are the
validator's job; this module only rejects payloads it cannot read.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pydantic

from usage_ledger.core.errors import ValidationError
from usage_ledger.models import UsageReport

TOTALS_FIELDS = (
    "inputTokens",
    "outputTokens",
    "cacheCreationTokens",
    "cacheReadTokens",
    "totalTokens",
    "totalCost",
)


def _invalid(detail: str) -> ValidationError:
    return ValidationError(f"Invalid usage report: {detail}")


def _day_models(day: dict[str, Any]) -> list[str]:
    if isinstance(day.get("modelsUsed"), list):
        return [str(m) for m in day["modelsUsed"]]
    if isinstance(day.get("models"), dict):
        return [str(m) for m in day["models"]]
    breakdowns = day.get("modelBreakdowns")
    if isinstance(breakdowns, list):
        return [
            str(b["modelName"]) for b in breakdowns if isinstance(b, dict) and b.get("modelName")
        ]
    return []


def _from_ccusage(data: dict[str, Any]) -> dict[str, Any]:
    daily = data["daily"]
    totals = data["totals"]
    if not isinstance(daily, list) or not isinstance(totals, dict):
        raise _invalid("'daily' must be a list and 'totals' an object")
    if not daily:
        raise _invalid("no daily data")
    missing = [name for name in TOTALS_FIELDS if name not in totals]
    if missing:
        raise _invalid(f"totals missing {', '.join(missing)}")

    breakdown = []
    for day in daily:
        if not isinstance(day, dict) or "date" not in day:
            raise _invalid("every daily entry needs a date")
        entry = {key: day[key] for key in (*TOTALS_FIELDS, "date") if key in day}
        entry["modelsUsed"] = _day_models(day)
        breakdown.append(entry)

    dates = sorted(str(day["date"]) for day in breakdown)
    models = sorted({model for day in breakdown for model in day["modelsUsed"]})
    return {
        "totals": {name: totals[name] for name in TOTALS_FIELDS},
        "dateRange": {"start": dates[0], "end": dates[-1]},
        "modelsUsed": models,
        "dailyBreakdown": breakdown,
    }


def parse_usage_report(data: Any) -> UsageReport:
    """Build a UsageReport from decoded JSON.

    Raises:
        ValidationError: If the payload is not a usage report.
    """
    if not isinstance(data, dict):
        raise _invalid("expected a JSON object")
    if "daily" in data or "dailyBreakdown" not in data:
        if "daily" not in data or "totals" not in data:
            raise _invalid("missing 'daily' or 'totals' field")
        data = _from_ccusage(data)
    try:
        return UsageReport.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise _invalid(f"{location}: {first['msg']}") from exc


def load_report(path: str | Path) -> UsageReport:
    """Read and parse a report file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValidationError: If it is not valid JSON or not a usage report.
    """
    report_path = Path(path)
    if not report_path.exists():
        msg = f"Report file not found: {report_path}"
        raise FileNotFoundError(msg)
    try:
        data = json.loads(report_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise _invalid(f"not valid JSON ({exc.msg})") from exc
    return parse_usage_report(data)
