"""Shared async repository helpers for SQLModel session work."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Generic, TypeVar

import duckdb
import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import Session
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from usage_ledger.core.errors import ConflictError, StoreUnavailableError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

T = TypeVar("T")

_CONFLICT_ERRORS = (duckdb.ConstraintException, duckdb.TransactionException)


def translate_store_error(exc: Exception) -> Exception:
    """Map a driver failure onto the ledger error taxonomy.

    Unique-key collisions and write-write conflicts become
    ``ConflictError``; anything else the driver raises is
    ``StoreUnavailableError``.
    """
    if isinstance(exc, IntegrityError | StaleDataError):
        return ConflictError(str(exc))
    if isinstance(exc, DBAPIError):
        if isinstance(exc.orig, _CONFLICT_ERRORS) or "conflict" in str(exc.orig).lower():
            return ConflictError(str(exc.orig))
        return StoreUnavailableError(str(exc.orig))
    if isinstance(exc, _CONFLICT_ERRORS):
        return ConflictError(str(exc))
    return StoreUnavailableError(str(exc))


def _log_conflict_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "transaction_conflict_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


class AsyncRepository(Generic[T]):
    """Wrap sync SQLModel session work for async callers."""

    def __init__(self, engine: Engine, max_conflict_retries: int = 10) -> None:
        self._engine = engine
        self._max_conflict_retries = max_conflict_retries

    async def _run_session(self, fn: Callable[[Session], T]) -> T:
        """Run a sync function inside a Session on a worker thread."""

        def _run() -> T:
            try:
                with Session(self._engine) as session:
                    return fn(session)
            except (DBAPIError, StaleDataError, duckdb.Error) as exc:
                raise translate_store_error(exc) from exc

        return await asyncio.to_thread(_run)

    async def _run_transaction(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` and commit, retrying the whole unit on conflict.

        Each attempt gets a fresh Session so that no state read by a
        losing attempt leaks into the next one.

        Raises:
            ConflictError: If every attempt hit a concurrent modification.
            StoreUnavailableError: On any other store failure.
        """

        def _commit(session: Session) -> T:
            result = fn(session)
            session.commit()
            return result

        @retry(
            stop=stop_after_attempt(self._max_conflict_retries + 1),
            wait=wait_random_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=_log_conflict_retry,
            reraise=True,
        )
        async def _attempt() -> T:
            return await self._run_session(_commit)

        return await _attempt()
