"""
Telemetry Scheduler - the adaptive sampling loop.

Collects a snapshot every tick, publishes it, prunes history every Nth
tick and sleeps for an interval that depends on the operating mode.
"""

import asyncio
import logging
from typing import Optional

from .database import HistoryStore
from .events import SNAPSHOT_EVENT, WARNING_EVENT, EventHub
from .models import Mode, WarningEvent
from .state import AppState, StateView
from ..collectors.local_collector import ResourceSampler


logger = logging.getLogger(__name__)

PRUNE_SOURCE = "history_prune"
LOOP_SOURCE = "telemetry_loop"


def next_interval_ms(view: StateView, min_ms: int = 100, max_ms: int = 10_000) -> int:
    """Sleep interval for the next tick, clamped to [min_ms, max_ms]."""
    if view.mode == Mode.LOW_POWER:
        interval = view.settings.low_power_rate_ms
    else:
        interval = view.settings.refresh_rate_ms
    return max(min_ms, min(max_ms, int(interval)))


class TelemetryScheduler:
    """
    Owns the sampler and the sampling cadence.

    Only this loop calls ``ResourceSampler.collect``. Side-effect failures
    (publication, pruning) are logged or turned into warning events and
    never stop sampling.
    """

    def __init__(
        self,
        sampler: ResourceSampler,
        store: HistoryStore,
        state: AppState,
        hub: EventHub,
        prune_every_ticks: int = 180,
        min_interval_ms: int = 100,
        max_interval_ms: int = 10_000,
    ):
        self.sampler = sampler
        self.store = store
        self.state = state
        self.hub = hub
        self.prune_every_ticks = max(1, prune_every_ticks)
        self.min_interval_ms = min_interval_ms
        self.max_interval_ms = max_interval_ms
        self.tick_count = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop as a background task."""
        if self.running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event))
        logger.info("Telemetry scheduler started")
        return self._task

    async def stop(self):
        """Signal the loop to stop and wait for it to finish."""
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Telemetry scheduler stopped")

    async def run(self, stop: Optional[asyncio.Event] = None):
        """Run ticks until ``stop`` is set."""
        stop = stop or asyncio.Event()
        interval_ms = self.max_interval_ms
        while not stop.is_set():
            try:
                await self.tick()
                if stop.is_set():
                    break
                interval_ms = next_interval_ms(
                    self.state.view(), self.min_interval_ms, self.max_interval_ms
                )
            except Exception as e:
                # Keep sampling on the last good interval
                logger.error(f"Telemetry tick failed: {e}")
                self._warn(str(e), LOOP_SOURCE)

            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_ms / 1000)
            except asyncio.TimeoutError:
                pass

    async def tick(self):
        """One iteration: collect, record, publish and maybe prune."""
        loop = asyncio.get_running_loop()

        # psutil calls block, keep them off the event loop
        snapshot = await loop.run_in_executor(None, self.sampler.collect)
        self.state.record_snapshot(snapshot)

        try:
            self.hub.publish(SNAPSHOT_EVENT, snapshot)
        except Exception as e:
            logger.warning(f"Failed to publish telemetry snapshot: {e}")

        self.tick_count += 1
        if self.tick_count % self.prune_every_ticks == 0:
            await self._prune(loop)

    async def _prune(self, loop: asyncio.AbstractEventLoop):
        keep_days = self.state.view().settings.history_retention_days
        try:
            await loop.run_in_executor(None, self.store.prune, keep_days)
        except Exception as e:
            logger.warning(f"History prune failed: {e}")
            self._warn(str(e), PRUNE_SOURCE)

    def _warn(self, message: str, source: str):
        try:
            self.hub.publish(WARNING_EVENT, WarningEvent(message=message, source=source))
        except Exception as e:
            logger.warning(f"Failed to publish {source} warning: {e}")
