"""Shared fixtures for ledger tests."""

import pytest
from factories import MutableClock

from usage_ledger.core.config import LedgerConfig
from usage_ledger.runtime import build_ledger


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig(identity_scheme="machine")


@pytest.fixture
def ledger(tmp_path, config, clock):
    """Ledger on a temporary DuckDB file with a fixed clock."""
    ledger = build_ledger(config, tmp_path / "ledger.duckdb", clock)
    yield ledger
    ledger.store.close_sync()
