"""Tests for SyncScheduler."""

from __future__ import annotations

import asyncio

import pytest

from curatorsync.contracts.exceptions import SyncInProgressError
from curatorsync.contracts.sync import FullSyncResult, SyncStatus
from curatorsync.settings import SYNC_INTERVAL_KEY, SettingsStore
from curatorsync.sync.scheduler import SchedulerState, SyncScheduler


class GatedEngine:
    """Engine stand-in whose sync blocks until ``release`` is set."""

    def __init__(self, settings: SettingsStore) -> None:
        self._settings = settings
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.finished = asyncio.Event()
        self.calls = 0
        self.error: Exception | None = None

    async def perform_full_sync(self) -> FullSyncResult:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        if self.error is not None:
            raise self.error
        await self._settings.update_last_sync_time()
        self.finished.set()
        return FullSyncResult()


async def _startup_only_sleep(seconds: float) -> None:
    if seconds:
        await asyncio.Event().wait()


@pytest.fixture
def gated(settings: SettingsStore) -> GatedEngine:
    return GatedEngine(settings)


@pytest.fixture
def scheduler(gated: GatedEngine, settings: SettingsStore) -> SyncScheduler:
    return SyncScheduler(gated, settings, startup_delay=0)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_manual_sync_while_syncing_is_rejected(scheduler: SyncScheduler, gated: GatedEngine) -> None:
    running = asyncio.create_task(scheduler.check_and_perform_sync())
    await gated.started.wait()

    assert scheduler.state == SchedulerState.SYNCING
    with pytest.raises(SyncInProgressError, match="already in progress"):
        await scheduler.perform_manual_sync()

    gated.release.set()
    assert await running is True
    assert gated.calls == 1
    assert scheduler.state == SchedulerState.IDLE


@pytest.mark.asyncio
async def test_periodic_check_skips_while_manual_sync_runs(scheduler: SyncScheduler, gated: GatedEngine) -> None:
    manual = asyncio.create_task(scheduler.perform_manual_sync())
    await gated.started.wait()

    assert await scheduler.check_and_perform_sync() is False

    gated.release.set()
    await manual
    assert gated.calls == 1


@pytest.mark.asyncio
async def test_check_skips_when_not_due(scheduler: SyncScheduler, gated: GatedEngine) -> None:
    gated.release.set()
    assert await scheduler.check_and_perform_sync() is True

    assert await scheduler.check_and_perform_sync() is False
    assert gated.calls == 1
    assert not scheduler.is_syncing


@pytest.mark.asyncio
async def test_failed_sync_clears_guard_and_records_error(
    scheduler: SyncScheduler, gated: GatedEngine, settings: SettingsStore
) -> None:
    gated.error = RuntimeError("disk on fire")
    gated.release.set()

    with pytest.raises(RuntimeError):
        await scheduler.perform_manual_sync()

    assert not scheduler.is_syncing
    [entry] = await settings.get_sync_history()
    assert entry.status == SyncStatus.ERROR
    assert "disk on fire" in entry.message


@pytest.mark.asyncio
@pytest.mark.parametrize(("requested", "effective"), [(2, 5), (-3, 5), (45, 45)])
async def test_update_interval_is_clamped_and_persisted(
    scheduler: SyncScheduler, settings: SettingsStore, requested: int, effective: int
) -> None:
    assert await scheduler.update_interval(requested) == effective

    assert scheduler.interval_minutes == effective
    assert await settings.get_setting(SYNC_INTERVAL_KEY) == effective


@pytest.mark.asyncio
async def test_update_interval_without_value_keeps_current(scheduler: SyncScheduler) -> None:
    await scheduler.update_interval(15)

    assert await scheduler.update_interval(None) == 15
    assert await scheduler.update_interval(0) == 15


@pytest.mark.asyncio
async def test_start_runs_startup_check_and_stop_cancels_tasks(
    gated: GatedEngine, settings: SettingsStore
) -> None:
    gated.release.set()
    await settings.update_sync_settings(sync_interval_minutes=10, sync_on_startup=True)
    scheduler = SyncScheduler(gated, settings, startup_delay=0, sleep=_startup_only_sleep)  # type: ignore[arg-type]

    await scheduler.start()
    await asyncio.wait_for(gated.finished.wait(), timeout=1)

    assert scheduler.is_running
    assert scheduler.interval_minutes == 10

    await scheduler.stop()
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_start_without_startup_sync(gated: GatedEngine, settings: SettingsStore) -> None:
    sleeps: list[float] = []

    async def recording_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        await asyncio.Event().wait()

    await settings.update_sync_settings(sync_on_startup=False)
    scheduler = SyncScheduler(gated, settings, sleep=recording_sleep)  # type: ignore[arg-type]

    await scheduler.start()
    await asyncio.sleep(0)
    await scheduler.stop()

    assert sleeps == [30 * 60]
    assert gated.calls == 0


@pytest.mark.asyncio
async def test_update_interval_restarts_running_loop(gated: GatedEngine, settings: SettingsStore) -> None:
    sleeps: list[float] = []

    async def recording_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        await asyncio.Event().wait()

    await settings.update_sync_settings(sync_on_startup=False)
    scheduler = SyncScheduler(gated, settings, sleep=recording_sleep)  # type: ignore[arg-type]
    await scheduler.start()
    await asyncio.sleep(0)

    await scheduler.update_interval(2)
    await asyncio.sleep(0)
    await scheduler.stop()

    assert sleeps == [30 * 60, 5 * 60]
