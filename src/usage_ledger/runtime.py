"""Wiring of the store and services for one ledger database."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from usage_ledger.core.clock import Clock, utc_now
from usage_ledger.core.config import LedgerConfig
from usage_ledger.services.profile import ProfileService
from usage_ledger.services.ranking import RankingService
from usage_ledger.services.reconciliation import ReconciliationService
from usage_ledger.services.storage import LedgerStore
from usage_ledger.services.tasks import TaskRunner


@dataclass
class Ledger:
    config: LedgerConfig
    store: LedgerStore
    reconciliation: ReconciliationService
    profiles: ProfileService
    ranking: RankingService
    tasks: TaskRunner


def build_ledger(
    config: LedgerConfig, db_path: str | Path | None = None, clock: Clock = utc_now
) -> Ledger:
    """Create the store and every service sharing it."""
    store = LedgerStore(config, db_path)
    profiles = ProfileService(store, clock)
    return Ledger(
        config=config,
        store=store,
        reconciliation=ReconciliationService(config, store, clock=clock),
        profiles=profiles,
        ranking=RankingService(config, store),
        tasks=TaskRunner(store, config.tasks, profiles, clock),
    )


@asynccontextmanager
async def open_ledger(
    config: LedgerConfig, db_path: str | Path | None = None, clock: Clock = utc_now
) -> AsyncIterator[Ledger]:
    ledger = build_ledger(config, db_path, clock)
    try:
        yield ledger
    finally:
        await ledger.store.close()
