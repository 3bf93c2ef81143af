"""
Interval scheduler for matchpool.

Fires one reconciliation cycle each time wall-clock time crosses into a new
`api_update_interval` bucket. Only one cycle runs at a time; a trigger that
arrives while a cycle is in flight is dropped, never queued.

Runs as its own worker (`python -m scheduler.service`) or inside the API
process when MP_SELF_SCHEDULER_ENABLED is set.
"""
from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timezone
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.models.enums import SyncTrigger
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SCHEDULER_DROPPED_TRIGGERS, SYNC_IN_FLIGHT, start_metrics_server

from ingest.providers.football_data import FootballDataClient
from sync.pipeline import SyncPipeline
from sync.settings import SettingsProvider

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IntervalScheduler:
    """
    State:
        _last_bucket: bucket index of the last observed tick (None before the first).
        _interval_ms: current interval; changing it re-bases the bucket.
        _running: True while a cycle is in flight.
        progress: percentage of the current bucket elapsed, 0-100.
    """

    def __init__(
        self,
        pipeline: SyncPipeline,
        settings_provider: SettingsProvider,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._settings_provider = settings_provider
        self._settings = settings or get_settings()
        self._clock = clock or _utc_now
        self._interval_ms: Optional[int] = None
        self._last_bucket: Optional[int] = None
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()
        self.progress: float = 0.0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_ms(self) -> Optional[int]:
        return self._interval_ms

    # ── Interval ────────────────────────────────────────────────────────

    async def refresh_interval(self) -> None:
        """Re-read api_update_interval; a changed value re-bases the bucket."""
        try:
            system = await self._settings_provider.get()
        except Exception as exc:
            logger.warning("interval_refresh_failed", error=str(exc))
            return
        self.set_interval_minutes(system.api_update_interval)

    def set_interval_minutes(self, minutes: int) -> None:
        interval_ms = max(1, minutes) * 60_000
        if interval_ms != self._interval_ms:
            if self._interval_ms is not None:
                logger.info("interval_changed", old_ms=self._interval_ms, new_ms=interval_ms)
            self._interval_ms = interval_ms
            self._last_bucket = None

    # ── Tick / trigger ──────────────────────────────────────────────────

    def tick(self, now: datetime | None = None) -> bool:
        """
        Advance the bucket clock. Returns True if a cycle was started.
        The first observed bucket never fires.
        """
        if self._interval_ms is None:
            return False
        now_ms = int((now or self._clock()).timestamp() * 1000)
        bucket = now_ms // self._interval_ms
        self.progress = (now_ms % self._interval_ms) * 100.0 / self._interval_ms

        if self._last_bucket is None:
            self._last_bucket = bucket
            return False
        if bucket == self._last_bucket:
            return False
        self._last_bucket = bucket
        return self.trigger()

    def trigger(self) -> bool:
        """Start a cycle unless one is in flight. Returns False when dropped."""
        if self._running:
            SCHEDULER_DROPPED_TRIGGERS.inc()
            logger.info("interval_trigger_dropped", reason="cycle_in_flight")
            return False
        self._running = True
        SYNC_IN_FLIGHT.set(1)
        self._task = asyncio.create_task(self._run_cycle())
        return True

    async def _run_cycle(self) -> None:
        try:
            result = await self._pipeline.run_cycle(require_pending=True, trigger=SyncTrigger.INTERVAL)
            if not result.skipped:
                logger.info(
                    "interval_cycle_completed",
                    updates=result.updates, checked=result.checked, scored=result.scored,
                )
        except Exception as exc:
            logger.error("interval_cycle_failed", error=str(exc), exc_info=True)
        finally:
            self._running = False
            SYNC_IN_FLIGHT.set(0)
            await self.refresh_interval()

    async def wait_idle(self) -> None:
        """Wait for the in-flight cycle, if any."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ── Main loop ───────────────────────────────────────────────────────

    async def run(self) -> None:
        await self.refresh_interval()
        logger.info("interval_scheduler_started", interval_ms=self._interval_ms)
        while not self._shutdown.is_set():
            try:
                self.tick()
                await asyncio.sleep(self._settings.scheduler_tick_interval_s)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("scheduler_loop_error", error=str(exc), exc_info=True)
                await asyncio.sleep(2.0)

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def stop(self) -> None:
        self.request_shutdown()
        if self._task is not None and not self._task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=30)
            except asyncio.TimeoutError:
                self._task.cancel()
                logger.warning("interval_cycle_abandoned")


async def main() -> None:
    """Scheduler worker entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server(settings.metrics_port + 2)

    db = DatabaseManager(settings)
    await db.connect()
    feed = FootballDataClient(settings)
    await feed.start()

    pipeline = SyncPipeline(db, feed, settings)
    scheduler = IntervalScheduler(pipeline, pipeline.settings_provider, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, scheduler.request_shutdown)

    logger.info("scheduler_service_started", instance_id=settings.instance_id)

    try:
        await scheduler.run()
    finally:
        await scheduler.stop()
        await feed.close()
        await db.disconnect()
        logger.info("scheduler_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
