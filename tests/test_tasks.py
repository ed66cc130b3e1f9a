"""Tests for the deferred task runner."""

import asyncio

from factories import make_day, make_report

from usage_ledger.core.config import TaskConfig
from usage_ledger.models import RECOMPUTE_PROFILE, IdentityKey
from usage_ledger.services.tasks import TaskRunner

ALICE = IdentityKey(username="alice", department="research", machine_id="laptop")


async def _submit(ledger):
    await ledger.reconciliation.submit(make_report(make_day("2025-01-05")), ALICE)


class TestRunPending:
    """One pass over due tasks."""

    async def test_completes_and_removes_task(self, ledger):
        await _submit(ledger)

        summary = await ledger.tasks.run_pending()

        assert summary.completed == 1
        assert await ledger.store.tasks.get_all() == []
        profile = await ledger.store.profiles.get("alice")
        assert profile is not None
        assert profile.total_tokens == 1000

    async def test_nothing_due(self, ledger):
        summary = await ledger.tasks.run_pending()
        assert summary.model_dump() == {
            "completed": 0,
            "rescheduled": 0,
            "failed": 0,
            "superseded": 0,
        }

    async def test_failure_is_rescheduled(self, ledger, clock):
        await _submit(ledger)

        async def broken(identity):
            raise RuntimeError("profile store offline")

        ledger.tasks.handlers[RECOMPUTE_PROFILE] = broken

        summary = await ledger.tasks.run_pending()

        assert summary.rescheduled == 1
        (task,) = await ledger.store.tasks.get_all()
        assert task.attempts == 1
        assert task.status == "pending"
        assert task.last_error == "RuntimeError: profile store offline"

        # Not due again until the retry delay has passed
        assert (await ledger.tasks.run_pending()).rescheduled == 0
        clock.advance(seconds=31)
        assert (await ledger.tasks.run_pending()).rescheduled == 1

    async def test_gives_up_after_max_attempts(self, ledger, clock):
        ledger.tasks.config = TaskConfig(max_attempts=2, retry_delay_seconds=0)
        await _submit(ledger)

        async def broken(identity):
            raise RuntimeError("boom")

        ledger.tasks.handlers[RECOMPUTE_PROFILE] = broken

        assert (await ledger.tasks.run_pending()).rescheduled == 1
        assert (await ledger.tasks.run_pending()).failed == 1
        (task,) = await ledger.store.tasks.get_all()
        assert task.status == "failed"
        assert (await ledger.tasks.run_pending()).failed == 0

    async def test_resubmission_revives_failed_task(self, ledger):
        ledger.tasks.config = TaskConfig(max_attempts=1)
        await _submit(ledger)

        async def broken(identity):
            raise RuntimeError("boom")

        ledger.tasks.handlers[RECOMPUTE_PROFILE] = broken
        assert (await ledger.tasks.run_pending()).failed == 1

        await _submit(ledger)

        (task,) = await ledger.store.tasks.get_all()
        assert task.status == "pending"
        assert task.attempts == 0

    async def test_rescheduled_while_running_is_kept(self, ledger, clock):
        await _submit(ledger)
        recompute = ledger.tasks.handlers[RECOMPUTE_PROFILE]

        async def racing(identity):
            await recompute(identity)
            await ledger.store.tasks.schedule(RECOMPUTE_PROFILE, identity, clock())

        ledger.tasks.handlers[RECOMPUTE_PROFILE] = racing

        summary = await ledger.tasks.run_pending()

        assert summary.superseded == 1
        assert summary.completed == 0
        (task,) = await ledger.store.tasks.get_all()
        assert task.identity == "alice"

    async def test_unknown_task_name_fails(self, ledger, clock):
        await ledger.store.tasks.schedule("send_digest", "alice", clock())

        summary = await ledger.tasks.run_pending()

        assert summary.rescheduled == 1
        (task,) = await ledger.store.tasks.get_all()
        assert task.last_error == "LookupError: No handler for task send_digest"


class TestRunForever:
    async def test_stops_when_event_set(self, ledger, clock):
        await _submit(ledger)
        runner = TaskRunner(
            ledger.store, TaskConfig(poll_interval_seconds=0.01), ledger.profiles, clock
        )
        stop = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop.set()

        await asyncio.gather(runner.run_forever(stop), stop_soon())

        assert await ledger.store.tasks.get_all() == []
        assert await ledger.store.profiles.get("alice") is not None
