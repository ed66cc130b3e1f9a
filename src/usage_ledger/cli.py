"""CLI for the usage ledger."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Literal, TypeVar

import pydantic
import structlog
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from usage_ledger import __version__
from usage_ledger.core.config import LedgerConfig, MergePolicyName, load_config
from usage_ledger.core.errors import ConfigurationError, LedgerError
from usage_ledger.models import IdentityKey
from usage_ledger.runtime import Ledger, open_ledger
from usage_ledger.services.ingest import load_report
from usage_ledger.services.ranking import LeaderboardEntry
from usage_ledger.services.reporting import export_leaderboard

T = TypeVar("T")

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="usage-ledger",
    help="Usage Ledger - reconcile AI coding usage reports into canonical per-day records",
    add_completion=False,
)
console = Console()

SortOption = Annotated[
    Literal["cost", "tokens"], typer.Option("--sort", help="Rank by cost or tokens")
]


class CliState:
    def __init__(self, config_path: Path | None, verbose: bool) -> None:
        self.config_path = config_path
        self.verbose = verbose

    def load(self) -> LedgerConfig:
        if self.config_path is None:
            return LedgerConfig()
        return load_config(self.config_path)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"usage-ledger v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config YAML file")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Usage Ledger CLI."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    ctx.obj = CliState(config_path, verbose)


def _run(ctx: typer.Context, action: Callable[[Ledger], Awaitable[T]]) -> T:
    """Open the ledger, run one action, and map failures to exit code 1."""
    state: CliState = ctx.obj

    async def _go() -> T:
        async with open_ledger(state.load()) as ledger:
            return await action(ledger)

    try:
        return asyncio.run(_go())
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except pydantic.ValidationError as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(1) from e
    except LedgerError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        if state.verbose:
            console.print_exception()
        raise typer.Exit(1) from e


def _leaderboard_table(title: str, entries: list[LeaderboardEntry]) -> Table:
    table = Table(title=title)
    for column in ("Rank", "User", "Scope", "Department", "Tokens", "Cost", "Flagged"):
        justify = "right" if column in ("Rank", "Tokens", "Cost") else "left"
        table.add_column(column, justify=justify)
    for e in entries:
        table.add_row(
            str(e.rank),
            e.username,
            e.scope or "-",
            e.department or "-",
            f"{e.totals.total_tokens:,}",
            f"${e.totals.total_cost:,.2f}",
            "yes" if e.flagged else "",
        )
    return table


@app.command()
def submit(
    ctx: typer.Context,
    report_path: Annotated[Path, typer.Argument(help="Usage report JSON (ccusage cc.json)")],
    user: Annotated[str, typer.Option("--user", "-u", help="Username the report belongs to")],
    department: Annotated[str | None, typer.Option("--department", help="Department")] = None,
    machine: Annotated[str | None, typer.Option("--machine", help="Machine id")] = None,
    machine_name: Annotated[
        str | None, typer.Option("--machine-name", help="Human-readable machine name")
    ] = None,
    source: Annotated[
        Literal["cli", "oauth"] | None, typer.Option("--source", help="Submission source")
    ] = None,
    policy: Annotated[
        MergePolicyName | None,
        typer.Option("--policy", help="Merge policy: additive or overwrite"),
    ] = None,
    drain: Annotated[
        bool, typer.Option("--drain/--no-drain", help="Run queued recomputes afterwards")
    ] = True,
) -> None:
    """Validate a usage report and merge it into the canonical record."""

    async def _submit(ledger: Ledger) -> None:
        report = load_report(report_path)
        identity = IdentityKey(
            username=user,
            department=department,
            machine_id=machine,
            machine_name=machine_name,
            source=source,
        )
        result = await ledger.reconciliation.submit(report, identity, policy)
        console.print(f"[green]{result.message}[/green] ({result.record_id})")
        if result.flagged:
            console.print("[yellow]Flagged for review:[/yellow]")
            for reason in result.flag_reasons:
                console.print(f"  - {reason}")
        if drain:
            summary = await ledger.tasks.run_pending()
            console.print(f"Recomputed profiles: {summary.completed}")

    _run(ctx, _submit)


@app.command()
def recompute(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="Username to recompute")],
) -> None:
    """Rebuild one profile summary from its canonical records."""

    async def _recompute(ledger: Ledger) -> None:
        result = await ledger.profiles.recompute_profile(user)
        if not result.success:
            console.print(f"[yellow]Nothing to do:[/yellow] {result.reason}")
            return
        profile = result.profile
        console.print(f"[green]Profile {result.action}[/green] for {user}")
        if profile:
            console.print(f"  Records: {profile.total_submissions}")
            console.print(f"  Tokens: {profile.total_tokens:,}")
            console.print(f"  Cost: ${profile.total_cost:,.2f}")

    _run(ctx, _recompute)


@app.command("run-tasks")
def run_tasks(
    ctx: typer.Context,
    forever: Annotated[bool, typer.Option("--forever", help="Keep polling for tasks")] = False,
) -> None:
    """Run deferred profile recomputes."""

    async def _tasks(ledger: Ledger) -> None:
        if forever:
            await ledger.tasks.run_forever()
            return
        summary = await ledger.tasks.run_pending()
        console.print(
            f"Completed: {summary.completed}  Rescheduled: {summary.rescheduled}  "
            f"Failed: {summary.failed}"
        )

    _run(ctx, _tasks)


@app.command()
def leaderboard(
    ctx: typer.Context,
    sort: SortOption = "cost",
    page: Annotated[int, typer.Option("--page", help="Zero-based page")] = 0,
    page_size: Annotated[int | None, typer.Option("--page-size", help="Rows per page")] = None,
    include_flagged: Annotated[
        bool, typer.Option("--include-flagged", help="Include records flagged for review")
    ] = False,
    export: Annotated[
        Path | None, typer.Option("--export", help="Write Markdown/CSV/JSON to this directory")
    ] = None,
) -> None:
    """Show the all-time leaderboard."""

    async def _leaderboard(ledger: Ledger) -> None:
        result = await ledger.ranking.leaderboard(sort, page, page_size, include_flagged)
        console.print(_leaderboard_table(f"Leaderboard by {sort}", result.items))
        pages = max(result.total_pages, 1)
        console.print(f"Page {result.page + 1} of {pages} ({result.total} records)")
        if export:
            paths = await export_leaderboard(result.items, export)
            console.print(f"Exported: {', '.join(str(p) for p in paths)}")

    _run(ctx, _leaderboard)


@app.command("range-leaderboard")
def range_leaderboard(
    ctx: typer.Context,
    date_from: Annotated[str, typer.Argument(help="First date, YYYY-MM-DD")],
    date_to: Annotated[str, typer.Argument(help="Last date, YYYY-MM-DD")],
    sort: SortOption = "cost",
    limit: Annotated[int | None, typer.Option("--limit", help="Maximum rows")] = None,
    include_flagged: Annotated[
        bool, typer.Option("--include-flagged", help="Include records flagged for review")
    ] = False,
) -> None:
    """Show a leaderboard computed from days inside a date range."""

    async def _range(ledger: Ledger) -> None:
        result = await ledger.ranking.leaderboard_by_date_range(
            date_from, date_to, sort, limit, include_flagged
        )
        console.print(_leaderboard_table(f"{date_from} .. {date_to} by {sort}", result.items))

    _run(ctx, _range)


@app.command()
def timeline(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option("--limit", help="Number of records")] = None,
) -> None:
    """Show the most recently updated records."""

    async def _timeline(ledger: Ledger) -> None:
        for entry in await ledger.ranking.activity_timeline(limit):
            console.print(
                f"{entry.submitted_at:%Y-%m-%d %H:%M}  {entry.username}"
                f"{'/' + entry.scope if entry.scope else ''}  "
                f"${entry.total_cost:,.2f}  {entry.total_tokens:,} tokens  "
                f"({entry.date_start} .. {entry.date_end})"
            )

    _run(ctx, _timeline)


@app.command()
def stats(
    ctx: typer.Context,
    department: Annotated[
        str | None, typer.Option("--department", help="Only this department")
    ] = None,
) -> None:
    """Show lab-wide or department statistics."""

    async def _stats(ledger: Ledger) -> None:
        if department:
            dept = await ledger.ranking.department_stats(department)
            console.print(f"[bold]{dept.department}[/bold]")
            console.print(f"  Identities: {dept.total_identities}")
            console.print(f"  Tokens: {dept.total_tokens:,}")
            console.print(f"  Cost: ${dept.total_cost:,.2f}")
            console.print(f"  Avg cost per identity: ${dept.avg_cost_per_identity:,.2f}")
            console.print(f"  Models: {', '.join(dept.models_used) or '-'}")
            return
        lab = await ledger.ranking.lab_stats()
        console.print("[bold]Lab statistics[/bold]")
        console.print(f"  Identities: {lab.total_identities}")
        console.print(f"  Departments: {lab.total_departments}")
        console.print(f"  Tokens: {lab.total_tokens:,}")
        console.print(f"  Cost: ${lab.total_cost:,.2f}")
        console.print(f"  Avg cost per identity: ${lab.avg_cost_per_identity:,.2f}")
        console.print(f"  Last submission: {lab.last_submission_at or '-'}")
        for usage in lab.model_usage:
            console.print(f"    {usage.model}: {usage.count}")

    _run(ctx, _stats)


@app.command()
def flagged(
    ctx: typer.Context,
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows (capped at 50)")] = 50,
) -> None:
    """List records awaiting review."""

    async def _flagged(ledger: Ledger) -> None:
        records = await ledger.ranking.flagged(limit)
        if not records:
            console.print("No records flagged for review.")
        for record in records:
            console.print(f"[bold]{record.id}[/bold] {record.username} ${record.total_cost:,.2f}")
            for reason in record.flag_reasons:
                console.print(f"  - {reason}")

    _run(ctx, _flagged)


@app.command()
def flag(
    ctx: typer.Context,
    record_id: Annotated[str, typer.Argument(help="Canonical record id")],
    clear: Annotated[bool, typer.Option("--clear", help="Clear the flag and its reasons")] = False,
    reason: Annotated[str | None, typer.Option("--reason", help="Reason to record")] = None,
) -> None:
    """Set or clear the review flag on a record."""

    async def _flag(ledger: Ledger) -> None:
        record = await ledger.reconciliation.update_flag_status(record_id, not clear, reason)
        state = "flagged" if record.flagged_for_review else "cleared"
        console.print(f"[green]{record.id} {state}[/green]")

    _run(ctx, _flag)


@app.command("merge-identities")
def merge_identities(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="Username whose records are merged")],
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Only show which action would apply")
    ] = False,
) -> None:
    """Collapse all of a user's records into one verified record."""

    async def _merge(ledger: Ledger) -> None:
        if dry_run:
            status = await ledger.reconciliation.claim_status(user)
            console.print(
                f"Action: {status.action or 'none'} "
                f"({status.total_submissions} records, {status.cli_count} cli, "
                f"{status.oauth_count} oauth, {status.unverified_count} unverified)"
            )
            return
        result = await ledger.reconciliation.merge_identities(user)
        console.print(f"[green]{result.action}[/green] -> {result.record_id}")
        await ledger.tasks.run_pending()

    _run(ctx, _merge)


@app.command()
def show(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="Username")],
    scope: Annotated[str, typer.Option("--scope", help="Machine id or source")] = "",
) -> None:
    """Show one record's daily usage trajectory."""

    async def _show(ledger: Ledger) -> None:
        trajectory = await ledger.reconciliation.trajectory(user, scope)
        table = Table(title=f"{user}{'/' + scope if scope else ''}")
        for column in ("Date", "Tokens", "Cost", "Models"):
            table.add_column(column)
        for day in trajectory.points:
            table.add_row(
                day.date,
                f"{day.total_tokens:,}",
                f"${day.total_cost:,.2f}",
                ", ".join(day.models_used),
            )
        console.print(table)
        summary = trajectory.summary
        console.print(
            f"{summary.days_active} days, avg ${summary.avg_daily_cost:,.2f}/day, "
            f"peak {summary.peak_date or '-'} (${summary.peak_cost:,.2f})"
        )
        machines = await ledger.reconciliation.machines_for(user)
        if machines:
            names = ", ".join(f"{m.machine_id} ({m.machine_name or '?'})" for m in machines)
            console.print(f"Machines: {names}")

    _run(ctx, _show)


@app.command("validate-config")
def validate_config(
    config_path: Annotated[Path, typer.Argument(help="Path to config YAML file")],
) -> None:
    """Validate a configuration file without touching the database."""
    try:
        config = load_config(config_path)
        console.print("[green]Configuration is valid![/green]")
        console.print(f"  Database: {config.get_database_path()}")
        console.print(f"  Identity scheme: {config.identity_scheme}")
        console.print(f"  Default merge policy: {config.default_merge_policy()}")
        console.print(f"  Anomaly policy: {config.anomaly.policy}")

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigurationError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except pydantic.ValidationError as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def info() -> None:
    """Show tool information and example commands."""
    console.print("[bold]Usage Ledger[/bold]")
    console.print(f"Version: {__version__}\n")

    console.print("[bold]Example Commands:[/bold]")
    console.print("  # Submit a ccusage export from one machine")
    console.print("  usage-ledger submit cc.json --user alice --machine laptop-1\n")

    console.print("  # Leaderboard by tokens, second page")
    console.print("  usage-ledger leaderboard --sort tokens --page 1\n")

    console.print("  # Leaderboard for January")
    console.print("  usage-ledger range-leaderboard 2025-01-01 2025-01-31\n")

    console.print("  # Department statistics")
    console.print("  usage-ledger stats --department research\n")

    console.print("  # Use a config file")
    console.print("  usage-ledger --config ledger.yaml leaderboard")


if __name__ == "__main__":
    app()
