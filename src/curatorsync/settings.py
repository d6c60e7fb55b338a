"""Key/value settings consumed by the sync engine and scheduler.

Values are stored JSON-encoded in the ``settings`` table. Recognized keys:

- ``syncIntervalMinutes``: int, clamped to at least 5
- ``syncOnStartup``: bool
- ``syncHistory``: list of ``{timestamp, status, message}``, newest first, at most 10
- ``lastSyncTime``: ISO-8601 string or ``None``
- ``currentCurator``: id of the active curator or ``None``
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import aiosqlite

from curatorsync.contracts.sync import (
    DEFAULT_SYNC_INTERVAL_MINUTES,
    SYNC_HISTORY_LIMIT,
    SyncHistoryEntry,
    SyncSettings,
    SyncStatus,
    clamp_interval,
)
from curatorsync.store.local_store import LocalStore
from curatorsync.utils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

SYNC_INTERVAL_KEY = "syncIntervalMinutes"
SYNC_ON_STARTUP_KEY = "syncOnStartup"
SYNC_HISTORY_KEY = "syncHistory"
LAST_SYNC_TIME_KEY = "lastSyncTime"
CURRENT_CURATOR_KEY = "currentCurator"


def _builtin_default(key: str) -> Any:
    defaults: dict[str, Any] = {
        SYNC_INTERVAL_KEY: DEFAULT_SYNC_INTERVAL_MINUTES,
        SYNC_ON_STARTUP_KEY: True,
        SYNC_HISTORY_KEY: [],
        LAST_SYNC_TIME_KEY: None,
        CURRENT_CURATOR_KEY: None,
    }
    return defaults.get(key)


class SettingsStore:
    def __init__(self, store: LocalStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the decoded value of *key*.

        When the key is absent, *default* is returned, or the built-in default
        for a recognized key when *default* is ``None``.
        """
        async with self._store.connection() as conn:
            raw = await self._read(conn, key)
        if raw is None:
            return default if default is not None else _builtin_default(key)
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable value for setting %s", key)
            return default if default is not None else _builtin_default(key)

    async def update_setting(self, key: str, value: Any) -> None:
        async with self._store.transaction() as conn:
            await self._write(conn, key, value)

    async def get_last_sync_time(self) -> datetime | None:
        return parse_iso(await self.get_setting(LAST_SYNC_TIME_KEY))

    async def update_last_sync_time(self, when: datetime | None = None) -> datetime:
        when = when or self._clock()
        await self.update_setting(LAST_SYNC_TIME_KEY, to_iso(when))
        return when

    async def get_sync_history(self) -> list[SyncHistoryEntry]:
        raw = await self.get_setting(SYNC_HISTORY_KEY)
        if not isinstance(raw, list):
            return []
        entries: list[SyncHistoryEntry] = []
        for item in raw:
            try:
                entries.append(SyncHistoryEntry.model_validate(item))
            except ValueError:
                logger.debug("Dropping malformed sync history entry %r", item)
        return entries

    async def add_sync_history_entry(self, status: SyncStatus, message: str) -> SyncHistoryEntry:
        """Prepend an entry to the sync history, keeping the newest ten."""
        entry = SyncHistoryEntry(timestamp=to_iso(self._clock()) or "", status=status, message=message)
        async with self._store.transaction() as conn:
            raw = await self._read(conn, SYNC_HISTORY_KEY)
            try:
                history = json.loads(raw) if raw is not None else []
            except json.JSONDecodeError:
                history = []
            if not isinstance(history, list):
                history = []
            history.insert(0, entry.model_dump(mode="json"))
            await self._write(conn, SYNC_HISTORY_KEY, history[:SYNC_HISTORY_LIMIT])
        return entry

    async def get_sync_settings(self) -> SyncSettings:
        return SyncSettings(
            sync_interval_minutes=await self.get_setting(SYNC_INTERVAL_KEY),
            sync_on_startup=bool(await self.get_setting(SYNC_ON_STARTUP_KEY)),
        )

    async def update_sync_settings(
        self,
        *,
        sync_interval_minutes: int | None = None,
        sync_on_startup: bool | None = None,
    ) -> SyncSettings:
        async with self._store.transaction() as conn:
            if sync_interval_minutes is not None:
                await self._write(conn, SYNC_INTERVAL_KEY, clamp_interval(sync_interval_minutes))
            if sync_on_startup is not None:
                await self._write(conn, SYNC_ON_STARTUP_KEY, bool(sync_on_startup))
        return await self.get_sync_settings()

    async def is_sync_due(self, threshold_minutes: int | None = None) -> bool:
        """``True`` when no sync has happened yet or the threshold has elapsed."""
        last = await self.get_last_sync_time()
        if last is None:
            return True
        if threshold_minutes is None:
            threshold_minutes = (await self.get_sync_settings()).sync_interval_minutes
        return self._clock() - last >= timedelta(minutes=threshold_minutes)

    @staticmethod
    async def _read(conn: aiosqlite.Connection, key: str) -> str | None:
        async with conn.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return None if row is None else row["value"]

    @staticmethod
    async def _write(conn: aiosqlite.Connection, key: str, value: Any) -> None:
        await conn.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT (key) DO UPDATE SET value = excluded.value",
            (key, json.dumps(value)),
        )
