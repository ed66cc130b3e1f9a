"""Leaderboard exports: Markdown, CSV and JSON."""

from __future__ import annotations

import asyncio
import csv
import io
import json
from pathlib import Path

from tabulate import tabulate

from usage_ledger.services.ranking import LeaderboardEntry

HEADERS = ("Rank", "User", "Scope", "Department", "Tokens", "Cost", "Dates", "Flagged")


def _rows(entries: list[LeaderboardEntry]) -> list[tuple]:
    return [
        (
            e.rank,
            e.username,
            e.scope or "-",
            e.department or "-",
            f"{e.totals.total_tokens:,}",
            f"${e.totals.total_cost:,.2f}",
            f"{e.date_start} .. {e.date_end}" if e.date_start else "-",
            "yes" if e.flagged else "",
        )
        for e in entries
    ]


def leaderboard_markdown(
    entries: list[LeaderboardEntry], title: str, description: str | None = None
) -> str:
    """Render a leaderboard as a Markdown document.

    Args:
        entries: Ranked entries.
        title: Report title (markdown heading).
        description: Optional description line below title.

    Returns:
        Markdown report content.
    """
    lines = [f"# {title}", ""]
    if description:
        lines.extend([description, ""])
    if entries:
        lines.append(tabulate(_rows(entries), headers=HEADERS, tablefmt="github"))
    else:
        lines.append("_No submissions._")
    return "\n".join(lines)


def leaderboard_csv(entries: list[LeaderboardEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        [
            "rank",
            "username",
            "scope",
            "department",
            "total_tokens",
            "total_cost",
            "date_start",
            "date_end",
            "flagged",
        ]
    )
    for e in entries:
        writer.writerow(
            [
                e.rank,
                e.username,
                e.scope,
                e.department or "",
                e.totals.total_tokens,
                f"{e.totals.total_cost:.4f}",
                e.date_start,
                e.date_end,
                e.flagged,
            ]
        )
    return buffer.getvalue()


def leaderboard_json(entries: list[LeaderboardEntry]) -> str:
    return json.dumps([e.model_dump(mode="json") for e in entries], indent=2)


async def export_leaderboard(
    entries: list[LeaderboardEntry], out_dir: str | Path, title: str = "Usage Leaderboard"
) -> list[Path]:
    """Write ``leaderboard.md``, ``.csv`` and ``.json`` into ``out_dir``."""
    directory = Path(out_dir)
    outputs = {
        directory / "leaderboard.md": leaderboard_markdown(entries, title),
        directory / "leaderboard.csv": leaderboard_csv(entries),
        directory / "leaderboard.json": leaderboard_json(entries),
    }

    def _save() -> list[Path]:
        directory.mkdir(parents=True, exist_ok=True)
        for path, content in outputs.items():
            path.write_text(content, encoding="utf-8")
        return list(outputs)

    return await asyncio.to_thread(_save)
