"""Deferred task table: at-least-once, idempotent follow-ups keyed by identity."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, update
from sqlmodel import Session, col, select

from usage_ledger.models import RecomputeTask

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()


class TaskQueue(AsyncRepository):
    """Schedule, claim and settle rows of the ``recompute_task`` table.

    A task is identified by ``(task_name, identity)``; scheduling an
    identity that is already queued only refreshes its token and due time.
    """

    def __init__(self, engine: Engine, max_conflict_retries: int = 10) -> None:
        super().__init__(engine, max_conflict_retries)

    @staticmethod
    def schedule_in(session: Session, task_name: str, identity: str, run_after: datetime) -> str:
        """Queue a task inside the caller's transaction.

        Returns:
            The token of this scheduling.
        """
        token = str(uuid.uuid4())
        statement = select(RecomputeTask).where(
            RecomputeTask.task_name == task_name,
            RecomputeTask.identity == identity,
        )
        existing = session.exec(statement).first()
        if existing:
            existing.token = token
            existing.run_after = run_after
            existing.attempts = 0
            existing.status = "pending"
            existing.last_error = None
            session.add(existing)
        else:
            session.add(
                RecomputeTask(
                    task_name=task_name,
                    identity=identity,
                    token=token,
                    run_after=run_after,
                    created_at=run_after,
                )
            )
        session.flush()
        return token

    async def schedule(self, task_name: str, identity: str, run_after: datetime) -> str:
        return await self._run_transaction(
            lambda session: self.schedule_in(session, task_name, identity, run_after)
        )

    async def due(self, now: datetime, limit: int = 100) -> list[RecomputeTask]:
        """Pending tasks whose due time has passed, oldest first."""

        def _get(session: Session) -> list[RecomputeTask]:
            statement = (
                select(RecomputeTask)
                .where(RecomputeTask.status == "pending", col(RecomputeTask.run_after) <= now)
                .order_by(col(RecomputeTask.run_after), col(RecomputeTask.identity))
                .limit(limit)
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def get_all(self) -> list[RecomputeTask]:
        def _get(session: Session) -> list[RecomputeTask]:
            statement = select(RecomputeTask).order_by(col(RecomputeTask.identity))
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def complete(self, task_id: str, token: str) -> bool:
        """Remove a finished task unless it was rescheduled meanwhile.

        Returns:
            True if the row was removed.
        """

        def _delete(session: Session) -> bool:
            statement = (
                delete(RecomputeTask)
                .where(col(RecomputeTask.id) == task_id, col(RecomputeTask.token) == token)
                .returning(col(RecomputeTask.id))
            )
            return session.connection().execute(statement).first() is not None

        return await self._run_transaction(_delete)

    async def fail(
        self,
        task_id: str,
        token: str,
        error: str,
        now: datetime,
        max_attempts: int,
        retry_delay_seconds: float,
    ) -> str | None:
        """Record a failed run and push the task back, or give up on it.

        Returns:
            The new status, or None if the task was rescheduled by someone
            else while it ran.
        """

        def _fail(session: Session) -> str | None:
            task = session.get(RecomputeTask, task_id)
            if task is None or task.token != token:
                return None
            attempts = task.attempts + 1
            status = "failed" if attempts >= max_attempts else "pending"
            statement = (
                update(RecomputeTask)
                .where(col(RecomputeTask.id) == task_id)
                .values(
                    attempts=attempts,
                    status=status,
                    last_error=error,
                    run_after=now + timedelta(seconds=retry_delay_seconds),
                )
            )
            session.connection().execute(statement)
            logger.warning(
                "task_failed",
                task=task.task_name,
                identity=task.identity,
                attempts=attempts,
                status=status,
                error=error,
            )
            return status

        return await self._run_transaction(_fail)
