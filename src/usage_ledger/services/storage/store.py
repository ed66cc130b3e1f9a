"""Ledger storage: owns the DuckDB engine and the repositories built on it."""

from __future__ import annotations

import gc
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import structlog
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, create_engine

from usage_ledger.core.config import LedgerConfig

from .profile_repository import ProfileRepository
from .submission_repository import SubmissionRepository
from .task_queue import TaskQueue

logger = structlog.get_logger()

T = TypeVar("T")


class LedgerStore:
    """Unified persistence layer for the ledger.

    Handles:
    - Canonical submissions (one row per identity and scope)
    - Profile summaries derived from them
    - The deferred recompute task table
    """

    def __init__(self, config: LedgerConfig, db_path: str | Path | None = None) -> None:
        """Initialize the store and create missing tables.

        Args:
            config: Ledger configuration.
            db_path: Database file; defaults to the configured path.
        """
        self.config = config
        self.db_path = Path(db_path) if db_path else config.get_database_path()
        self._engine = None
        self._init_db()

        retries = config.transactions.max_conflict_retries
        self.submissions = SubmissionRepository(self._engine, retries)
        self.profiles = ProfileRepository(self._engine, retries)
        self.tasks = TaskQueue(self._engine, retries)

    def _init_db(self) -> None:
        """Initialize DuckDB database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        db_url = f"duckdb:///{self.db_path}"
        # Use NullPool to avoid connection pooling issues on Windows
        self._engine = create_engine(db_url, poolclass=NullPool)
        SQLModel.metadata.create_all(self._engine)
        logger.info("store_init", path=str(self.db_path))

    async def transaction(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` as one atomic unit, retried on conflict.

        ``fn`` may combine helpers of every repository; they all share
        the Session it receives.
        """
        return await self.submissions._run_transaction(fn)

    async def close(self) -> None:
        """Dispose of the database engine."""
        self.close_sync()

    def close_sync(self) -> None:
        """Synchronously dispose of the database engine."""
        if self._engine:
            self._engine.dispose()
            self._engine = None

        gc.collect()
