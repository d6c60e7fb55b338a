"""Periodic, startup, and manual sync triggers with a single-flight guard."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from curatorsync.contracts.exceptions import SyncInProgressError
from curatorsync.contracts.sync import DEFAULT_SYNC_INTERVAL_MINUTES, FullSyncResult, SyncStatus, clamp_interval
from curatorsync.settings import SettingsStore
from curatorsync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncScheduler:
    """Runs at most one full sync at a time.

    A manual request made while a sync is running is rejected with
    :class:`SyncInProgressError`; periodic and startup checks just skip.
    """

    def __init__(
        self,
        engine: SyncEngine,
        settings: SettingsStore,
        *,
        startup_delay: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._startup_delay = startup_delay
        self._sleep = sleep
        self._interval = DEFAULT_SYNC_INTERVAL_MINUTES
        self._syncing = False
        self._loop_task: asyncio.Task[None] | None = None
        self._startup_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.SYNCING if self._syncing else SchedulerState.IDLE

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def interval_minutes(self) -> int:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        settings = await self._settings.get_sync_settings()
        self._interval = settings.sync_interval_minutes
        self._start_loop()
        if settings.sync_on_startup and self._startup_task is None:
            self._startup_task = asyncio.create_task(self._startup_check())
        logger.info("Sync scheduler started (every %d minutes)", self._interval)

    async def stop(self) -> None:
        tasks = [task for task in (self._loop_task, self._startup_task) if task is not None]
        self._loop_task = None
        self._startup_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def check_and_perform_sync(self) -> bool:
        """Run a sync if none is running and the interval has elapsed.

        Returns ``True`` when a sync was performed.
        """
        if self._syncing:
            logger.debug("Sync check skipped: a sync is already running")
            return False
        self._syncing = True
        try:
            if not await self._settings.is_sync_due(self._interval):
                logger.debug("Sync check skipped: not due yet")
                return False
            await self._perform()
            return True
        finally:
            self._syncing = False

    async def perform_manual_sync(self) -> FullSyncResult:
        if self._syncing:
            raise SyncInProgressError("A sync is already in progress")
        self._syncing = True
        try:
            return await self._perform()
        finally:
            self._syncing = False

    async def update_interval(self, minutes: int | None) -> int:
        """Persist a new interval (at least five minutes) and restart the periodic loop.

        ``None`` or ``0`` keeps the current interval.
        """
        effective = clamp_interval(minutes) if minutes else self._interval
        await self._settings.update_sync_settings(sync_interval_minutes=effective)
        self._interval = effective
        if self.is_running:
            await self._restart_loop()
        logger.info("Sync interval set to %d minutes", effective)
        return effective

    async def _perform(self) -> FullSyncResult:
        try:
            return await self._engine.perform_full_sync()
        except Exception as exc:
            await self._settings.add_sync_history_entry(SyncStatus.ERROR, f"Sync failed: {exc}")
            raise

    def _start_loop(self) -> None:
        if not self.is_running:
            self._loop_task = asyncio.create_task(self._run_periodic())

    async def _restart_loop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._start_loop()

    async def _run_periodic(self) -> None:
        while True:
            await self._sleep(self._interval * 60)
            try:
                await self.check_and_perform_sync()
            except Exception:
                logger.exception("Periodic sync failed")

    async def _startup_check(self) -> None:
        await self._sleep(self._startup_delay)
        try:
            await self.check_and_perform_sync()
        except Exception:
            logger.exception("Startup sync failed")
