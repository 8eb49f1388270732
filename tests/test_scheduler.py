"""Tests for the telemetry scheduler loop."""

import asyncio
from datetime import datetime, timezone

import pytest

from pulsecore.core.events import SNAPSHOT_EVENT, WARNING_EVENT, EventHub
from pulsecore.core.errors import StorageError
from pulsecore.core.models import (
    AppSettings,
    CpuMetrics,
    DiskMetrics,
    GpuMetrics,
    MemoryMetrics,
    Mode,
    NetworkMetrics,
    TelemetrySnapshot,
    WarningEvent,
)
from pulsecore.core.scheduler import (
    LOOP_SOURCE,
    PRUNE_SOURCE,
    TelemetryScheduler,
    next_interval_ms,
)
from pulsecore.core.state import AppState, StateView


class FakeSampler:
    def __init__(self):
        self.calls = 0

    def collect(self):
        self.calls += 1
        return TelemetrySnapshot(
            timestamp=datetime.now(timezone.utc),
            cpu=CpuMetrics(usage_pct=float(self.calls)),
            gpu=GpuMetrics(),
            memory=MemoryMetrics(),
            disk=DiskMetrics(),
            network=NetworkMetrics(),
        )


class FakeStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.pruned = []
        self.settings = None

    def load_settings(self):
        return self.settings

    def save_settings(self, settings):
        self.settings = settings

    def prune(self, keep_days):
        self.pruned.append(keep_days)
        if self.fail:
            raise StorageError("database is locked")
        return 0


def make_scheduler(store=None, settings=None, **kwargs):
    store = store or FakeStore()
    store.settings = settings or AppSettings(refresh_rate_ms=100, history_retention_days=7)
    state = AppState(store)
    hub = EventHub()
    scheduler = TelemetryScheduler(FakeSampler(), store, state, hub, **kwargs)
    return scheduler, store, state, hub


@pytest.mark.parametrize(
    "mode, refresh, low_power, expected",
    [
        (Mode.NORMAL, 1000, 5000, 1000),
        (Mode.LOW_POWER, 1000, 5000, 5000),
        (Mode.NORMAL, 10, 5000, 100),
        (Mode.LOW_POWER, 1000, 60_000, 10_000),
    ],
)
def test_next_interval_follows_mode_and_clamps(mode, refresh, low_power, expected):
    view = StateView(mode=mode, settings=AppSettings(refresh_rate_ms=refresh, low_power_rate_ms=low_power))
    assert next_interval_ms(view) == expected


def test_tick_records_and_publishes_snapshot():
    scheduler, _, state, hub = make_scheduler()

    async def run():
        queue = hub.subscribe()
        await scheduler.tick()
        return queue.get_nowait()

    event = asyncio.run(run())
    assert event.name == SNAPSHOT_EVENT
    assert event.payload is state.latest
    assert scheduler.tick_count == 1


def test_prune_runs_every_nth_tick_with_retention():
    scheduler, store, _, _ = make_scheduler(prune_every_ticks=3)

    async def run():
        for _ in range(7):
            await scheduler.tick()

    asyncio.run(run())
    assert store.pruned == [7, 7]


def test_prune_failure_publishes_warning_and_keeps_sampling():
    scheduler, _, _, hub = make_scheduler(store=FakeStore(fail=True), prune_every_ticks=1)
    warnings = []
    hub.add_listener(lambda e: warnings.append(e) if e.name == WARNING_EVENT else None)

    async def run():
        await scheduler.tick()
        await scheduler.tick()

    asyncio.run(run())
    assert scheduler.tick_count == 2
    assert len(warnings) == 2
    assert warnings[0].payload == WarningEvent(message="database is locked", source=PRUNE_SOURCE)


def test_publish_failure_does_not_stop_tick():
    scheduler, _, state, hub = make_scheduler()

    def broken(event):
        raise RuntimeError("listener exploded")

    hub.add_listener(broken)
    asyncio.run(scheduler.tick())
    assert scheduler.tick_count == 1
    assert state.latest is not None


def test_start_and_stop():
    scheduler, _, _, _ = make_scheduler()

    async def run():
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.35)
        await scheduler.stop()
        return scheduler.running

    assert asyncio.run(run()) is False
    # Ticks every 100 ms, first tick immediately
    assert 2 <= scheduler.tick_count <= 5


def test_mode_change_applies_on_next_tick():
    settings = AppSettings(refresh_rate_ms=100, low_power_rate_ms=10_000)
    scheduler, _, state, _ = make_scheduler(settings=settings)

    async def run():
        state.set_mode(Mode.LOW_POWER)
        scheduler.start()
        await asyncio.sleep(0.3)
        await scheduler.stop()

    asyncio.run(run())
    assert scheduler.tick_count == 1


def test_stop_interrupts_long_sleep():
    settings = AppSettings(refresh_rate_ms=10_000)
    scheduler, _, _, _ = make_scheduler(settings=settings)

    async def run():
        scheduler.start()
        await asyncio.sleep(0.05)
        await asyncio.wait_for(scheduler.stop(), timeout=1.0)

    asyncio.run(run())
    assert scheduler.tick_count == 1


class FlakySampler(FakeSampler):
    """Fails on the second collection only."""

    def collect(self):
        if self.calls == 1:
            self.calls += 1
            raise RuntimeError("transient psutil failure")
        return super().collect()


def test_failed_tick_is_reported_and_sampling_continues():
    scheduler, _, _, hub = make_scheduler()
    scheduler.sampler = FlakySampler()
    warnings = []
    hub.add_listener(lambda e: warnings.append(e.payload) if e.name == WARNING_EVENT else None)

    async def run():
        scheduler.start()
        await asyncio.sleep(0.45)
        alive = scheduler.running
        await scheduler.stop()
        return alive

    assert asyncio.run(run()) is True
    assert scheduler.sampler.calls >= 3
    assert scheduler.tick_count >= 2
    assert warnings[0] == WarningEvent(message="transient psutil failure", source=LOOP_SOURCE)


def test_failed_settings_read_keeps_loop_alive():
    scheduler, _, state, hub = make_scheduler()
    warnings = []
    hub.add_listener(lambda e: warnings.append(e.payload) if e.name == WARNING_EVENT else None)
    views = {"count": 0}
    real_view = state.view

    def flaky_view():
        views["count"] += 1
        if views["count"] == 1:
            raise ValueError("settings unavailable")
        return real_view()

    state.view = flaky_view

    async def run():
        scheduler.start()
        await asyncio.sleep(0.05)
        alive = scheduler.running
        await scheduler.stop()
        return alive

    assert asyncio.run(run()) is True
    assert [w.source for w in warnings] == [LOOP_SOURCE]
