"""Runner for deferred tasks queued in the ``recompute_task`` table."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from pydantic import BaseModel

from usage_ledger.core.clock import Clock, utc_now
from usage_ledger.core.config import TaskConfig
from usage_ledger.models import RECOMPUTE_PROFILE
from usage_ledger.services.profile import ProfileService
from usage_ledger.services.storage import LedgerStore

logger = structlog.get_logger()

TaskHandler = Callable[[str], Awaitable[object]]


class TaskRunSummary(BaseModel):
    completed: int = 0
    rescheduled: int = 0
    failed: int = 0
    superseded: int = 0


class TaskRunner:
    """Executes due tasks at least once.

    Handlers must be idempotent: a task whose completion could not be
    recorded simply runs again.
    """

    def __init__(
        self,
        store: LedgerStore,
        config: TaskConfig,
        profile_service: ProfileService,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.config = config
        self.clock = clock
        self.handlers: dict[str, TaskHandler] = {
            RECOMPUTE_PROFILE: profile_service.recompute_profile,
        }

    async def run_pending(self, limit: int = 100) -> TaskRunSummary:
        """Run every task that is due now, once.

        A failing task is pushed back by ``retry_delay_seconds`` and marked
        failed after ``max_attempts`` runs.
        """
        summary = TaskRunSummary()
        for task in await self.store.tasks.due(self.clock(), limit):
            handler = self.handlers.get(task.task_name)
            try:
                if handler is None:
                    msg = f"No handler for task {task.task_name}"
                    raise LookupError(msg)
                await handler(task.identity)
            except Exception as exc:
                status = await self.store.tasks.fail(
                    task.id,
                    task.token,
                    f"{type(exc).__name__}: {exc}",
                    self.clock(),
                    self.config.max_attempts,
                    self.config.retry_delay_seconds,
                )
                if status == "failed":
                    summary.failed += 1
                elif status == "pending":
                    summary.rescheduled += 1
                else:
                    summary.superseded += 1
                continue

            if await self.store.tasks.complete(task.id, task.token):
                summary.completed += 1
            else:
                # Rescheduled while running; the newer token stays queued
                summary.superseded += 1

        if summary != TaskRunSummary():
            logger.info("tasks_processed", **summary.model_dump())
        return summary

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Poll for due tasks until ``stop`` is set."""
        stop = stop or asyncio.Event()
        logger.info("task_runner_started", poll_interval=self.config.poll_interval_seconds)
        while not stop.is_set():
            await self.run_pending()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.config.poll_interval_seconds)
            except TimeoutError:
                continue
        logger.info("task_runner_stopped")
