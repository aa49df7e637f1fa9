"""Tests for the periodic sync scheduler."""
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from conftest import VOTER, FakeFetcher, proposal_event, vote_event
from votesync.errors import FetchError
from votesync.models import SyncRun
from votesync.scheduler import SyncScheduler


def _runs(db) -> list[SyncRun]:
    with db.session_scope() as session:
        return list(session.execute(select(SyncRun).order_by(SyncRun.id)).scalars())


class SlowFetcher(FakeFetcher):
    """Holds each cycle at latest_block until released, and tracks concurrency."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def latest_block(self) -> int:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.release.wait()
            return await super().latest_block()
        finally:
            self.active -= 1


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_records_successful_run(self, db, registry, fetcher, settings):
        fetcher.head = 110
        fetcher.proposals = [proposal_event(1, 105)]
        fetcher.votes = [vote_event(1, VOTER, 106)]
        scheduler = SyncScheduler(db, fetcher, registry, settings)

        result = await scheduler.run_once("manual")

        assert result is scheduler.last_result
        (run,) = _runs(db)
        assert (run.trigger, run.status) == ("manual", "ok")
        assert run.head_block == 110
        assert run.proposals_added == 1
        assert run.votes_added == 1
        assert run.registry_records == 0
        assert run.finished_at is not None

    @pytest.mark.asyncio
    async def test_records_failed_run(self, db, registry, fetcher, settings):
        fetcher.fail_with = FetchError("RPC eth_blockNumber failed")
        scheduler = SyncScheduler(db, fetcher, registry, settings)

        assert await scheduler.run_once("interval") is None

        (run,) = _runs(db)
        assert run.status == "failed"
        assert "eth_blockNumber" in run.error_message
        assert run.head_block is None
        assert scheduler.last_result is None

    @pytest.mark.asyncio
    async def test_runs_never_overlap(self, db, registry, settings):
        fetcher = SlowFetcher(head=120)
        scheduler = SyncScheduler(db, fetcher, registry, settings)

        first = asyncio.create_task(scheduler.run_once("interval"))
        second = asyncio.create_task(scheduler.run_once("manual"))
        await asyncio.sleep(0.01)
        assert scheduler.busy
        fetcher.release.set()
        results = await asyncio.gather(first, second)

        assert fetcher.max_active == 1
        assert all(r is not None for r in results)
        assert [r.trigger for r in _runs(db)] == ["interval", "manual"]
        # The second cycle resumes past the first one's watermark.
        assert ("proposals", 100, 120) in fetcher.calls
        assert not any(call[1] == 121 for call in fetcher.calls)


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_runs_startup_then_interval(self, db, registry, fetcher, settings):
        fetcher.head = 100
        scheduler = SyncScheduler(db, fetcher, registry, settings, interval=0.01)

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert not scheduler.running
        triggers = [r.trigger for r in _runs(db)]
        assert triggers[0] == "startup"
        assert len(triggers) >= 2
        assert set(triggers[1:]) == {"interval"}

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, db, registry, fetcher, settings):
        scheduler = SyncScheduler(db, fetcher, registry, settings, interval=10)
        task = scheduler.start()
        assert scheduler.start() is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, db, registry, fetcher, settings):
        fetcher.fail_with = FetchError("rpc down")
        scheduler = SyncScheduler(db, fetcher, registry, settings, interval=0.01)

        scheduler.start()
        await asyncio.sleep(0.05)
        fetcher.fail_with = None
        fetcher.head = 150
        await asyncio.sleep(0.05)
        await scheduler.stop()

        statuses = [r.status for r in _runs(db)]
        assert statuses[0] == "failed"
        assert "ok" in statuses
        assert scheduler.last_result.head_block == 150

    @pytest.mark.asyncio
    async def test_stop_waits_for_idle_interval(self, db, registry, fetcher, settings):
        scheduler = SyncScheduler(db, fetcher, registry, settings, interval=60)
        scheduler.start()
        await asyncio.sleep(0.02)
        await asyncio.wait_for(scheduler.stop(), timeout=1)
        assert len(_runs(db)) == 1

    @pytest.mark.asyncio
    async def test_stop_with_cancel_aborts_cycle(self, db, registry, settings):
        fetcher = SlowFetcher(head=130)
        scheduler = SyncScheduler(db, fetcher, registry, settings, interval=60)
        scheduler.start()
        await asyncio.sleep(0.02)
        assert scheduler.busy

        await asyncio.wait_for(scheduler.stop(cancel=True), timeout=1)

        assert not scheduler.running
        assert scheduler.last_result is None
        (run,) = _runs(db)
        assert run.status == "failed"
        assert run.error_message == "cancelled"
        assert run.finished_at is not None

    @pytest.mark.asyncio
    async def test_stop_before_start(self, db, registry, fetcher, settings):
        scheduler = SyncScheduler(db, fetcher, registry, settings)
        await scheduler.stop()
        assert not scheduler.running
