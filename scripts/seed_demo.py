#!/usr/bin/env python
"""Seed a demo ledger with a few researchers and print the rankings.

Shows the two merge policies side by side: a second machine adds to the
same days, while a corrected re-upload from the same machine replaces them.
"""

import argparse
import asyncio
from datetime import date, timedelta

from dotenv import load_dotenv

from usage_ledger.core.config import LedgerConfig
from usage_ledger.models import DailyRecord, DateRange, IdentityKey, UsageReport
from usage_ledger.runtime import open_ledger
from usage_ledger.services.reporting import leaderboard_markdown

load_dotenv()

RESEARCHERS = [
    ("alice", "research", "alice-laptop", 12.5),
    ("alice", "research", "alice-desktop", 6.0),
    ("bob", "research", "bob-laptop", 9.0),
    ("carol", "platform", "carol-laptop", 21.0),
]


def build_report(days: int, daily_cost: float, model: str = "claude-sonnet-4") -> UsageReport:
    """Report with ``days`` consecutive days ending yesterday."""
    end = date.today() - timedelta(days=1)
    breakdown = []
    for offset in range(days):
        day = end - timedelta(days=days - 1 - offset)
        breakdown.append(
            DailyRecord(
                date=day.isoformat(),
                input_tokens=40_000,
                output_tokens=10_000,
                cache_creation_tokens=5_000,
                cache_read_tokens=45_000,
                total_tokens=100_000,
                total_cost=daily_cost,
                models_used=[model],
            )
        )
    totals = {
        "input_tokens": 40_000 * days,
        "output_tokens": 10_000 * days,
        "cache_creation_tokens": 5_000 * days,
        "cache_read_tokens": 45_000 * days,
        "total_tokens": 100_000 * days,
        "total_cost": daily_cost * days,
    }
    return UsageReport(
        totals=totals,
        date_range=DateRange(start=breakdown[0].date, end=breakdown[-1].date),
        models_used=[model],
        daily_breakdown=breakdown,
    )


async def main(db_path: str) -> None:
    """Seed the ledger and show the results."""
    config = LedgerConfig(identity_scheme="machine")
    async with open_ledger(config, db_path) as ledger:
        for username, department, machine, daily_cost in RESEARCHERS:
            identity = IdentityKey(username=username, department=department, machine_id=machine)
            result = await ledger.reconciliation.submit(build_report(5, daily_cost), identity)
            print(f"{username}@{machine}: {result.message}")

        # Corrected re-upload from the same machine replaces its days
        identity = IdentityKey(username="bob", department="research", machine_id="bob-laptop")
        await ledger.reconciliation.submit(build_report(5, 10.0), identity, "overwrite")

        summary = await ledger.tasks.run_pending()
        print(f"Recomputed {summary.completed} profiles\n")

        page = await ledger.ranking.leaderboard()
        print(leaderboard_markdown(page.items, "Demo leaderboard"))

        for profile in await ledger.ranking.top_profiles():
            machines = profile.total_submissions
            print(f"{profile.username}: ${profile.total_cost:.2f} over {machines} machines")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", default="demo.duckdb", help="DuckDB file to create or reuse")
    args = parser.parse_args()
    asyncio.run(main(args.db))
