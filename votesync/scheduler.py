"""Periodic sync driver: one cycle at startup, then one per interval."""
from __future__ import annotations

import asyncio
import logging

from votesync.chain import EventFetcher
from votesync.config import Settings
from votesync.db import Database, finish_sync_run, start_sync_run
from votesync.ingest import CycleResult, run_cycle
from votesync.models import SyncRun
from votesync.registry import RegistryCache

log = logging.getLogger(__name__)


class SyncScheduler:
    """Runs sync cycles one at a time until stopped.

    The next tick is armed only after the previous cycle settles, and
    ``run_once`` holds a lock, so manual triggers never overlap a scheduled
    cycle either. Failures are logged and retried on the next tick.
    """

    def __init__(
        self,
        db: Database,
        fetcher: EventFetcher,
        registry: RegistryCache,
        settings: Settings,
        interval: float | None = None,
    ):
        self.db = db
        self.fetcher = fetcher
        self.registry = registry
        self.settings = settings
        self.interval = settings.sync_interval_seconds if interval is None else interval
        self.last_result: CycleResult | None = None
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_once(self, trigger: str = "manual") -> CycleResult | None:
        """Run one full cycle. Returns None when the cycle failed."""
        async with self._lock:
            log.info("Starting sync cycle (%s)", trigger)
            with self.db.session_scope() as session:
                run_id = start_sync_run(session, trigger).id
            try:
                result = await run_cycle(self.db, self.fetcher, self.registry, self.settings)
            except asyncio.CancelledError:
                log.warning("Sync cycle cancelled")
                self._finish(run_id, status="failed", error_message="cancelled")
                raise
            except Exception as exc:
                log.exception("Sync cycle failed: %s", exc)
                self._finish(run_id, status="failed", error_message=str(exc))
                return None
            self._finish(run_id, status="ok", counters={
                "head_block": result.head_block,
                "registry_records": result.registry_records,
                "proposals_added": result.proposals.added,
                "votes_added": result.votes.added,
                "votes_skipped": result.votes.skipped,
            })
            self.last_result = result
            log.info("Sync cycle completed at head %d", result.head_block)
            return result

    def _finish(self, run_id: int, **kwargs) -> None:
        with self.db.session_scope() as session:
            run = session.get(SyncRun, run_id)
            if run is not None:
                finish_sync_run(session, run, **kwargs)

    async def _loop(self) -> None:
        trigger = "startup"
        while not self._stop.is_set():
            try:
                await self.run_once(trigger)
            except Exception:
                log.exception("Sync cycle crashed")
            trigger = "interval"
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        log.info("Scheduler stopped")

    def start(self) -> asyncio.Task:
        """Start the background loop on the running event loop."""
        if self.running:
            return self._task  # type: ignore[return-value]
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="votesync-scheduler")
        log.info("Scheduler started (interval %.0fs)", self.interval)
        return self._task

    async def stop(self, cancel: bool = False) -> None:
        """Signal the loop to exit and wait for it.

        By default an in-flight cycle is allowed to finish; ``cancel=True``
        aborts it, discarding its uncommitted batch.
        """
        self._stop.set()
        task, self._task = self._task, None
        if task is None:
            return
        if cancel:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
