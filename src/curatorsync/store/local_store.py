"""Local persisted store backed by an SQLite file.

The store is a cache of a server-authoritative catalog. When the file is
unreadable or its schema does not match, the store performs a destructive
reset: close, delete, recreate, notify. Unsynced local edits are lost in that
case; every other open failure propagates.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from curatorsync.contracts.exceptions import StorageError, StorageSchemaError, StorageTransactionError
from curatorsync.store.recovery import RecoveryPolicy
from curatorsync.store.schema import REQUIRED_TABLES, SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger(__name__)

ResetListener = Callable[[str], Awaitable[None] | None]

_MEMORY = ":memory:"
_SIDE_FILE_SUFFIXES = ("-wal", "-shm", "-journal")


class LocalStore:
    """Owns the SQLite connection, its schema, and corruption recovery.

    All access goes through :meth:`transaction` (writes) or :meth:`connection`
    (reads). Both serialize on one lock, so a reader never observes a
    half-written aggregate.

    Args:
        path: Database file path, or ``":memory:"``.
        recovery: Policy that classifies failures and approves resets.
        on_reset: Called with the reset reason after local data was discarded.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        recovery: RecoveryPolicy | None = None,
        on_reset: ResetListener | None = None,
    ) -> None:
        self._path = str(path)
        self._recovery = recovery or RecoveryPolicy()
        self._on_reset = on_reset
        self._conn: aiosqlite.Connection | None = None
        self._ready = False
        self._resetting = False
        self._opening: asyncio.Task[aiosqlite.Connection] | None = None
        self._reset_task: asyncio.Task[aiosqlite.Connection] | None = None
        self._lock = asyncio.Lock()
        self.reset_count = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def recovery(self) -> RecoveryPolicy:
        return self._recovery

    @property
    def is_ready(self) -> bool:
        return self._ready and self._conn is not None

    @property
    def is_resetting(self) -> bool:
        return self._resetting

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_ready(self) -> aiosqlite.Connection:
        """Return the live connection, opening the store if needed.

        Concurrent callers share a single in-flight open (or reset).
        """
        if self._reset_task is not None:
            return await self._reset_task
        if self._conn is not None and self._ready:
            return self._conn

        if self._opening is None:
            self._opening = asyncio.create_task(self.open())
        opening = self._opening
        try:
            return await opening
        finally:
            if self._opening is opening and opening.done():
                self._opening = None

    async def open(self) -> aiosqlite.Connection:
        """Open the database and apply the versioned schema.

        Raises:
            StorageError: When the failure is not one the recovery policy
                resolves with a destructive reset.
        """
        if self._conn is not None and self._ready:
            return self._conn

        try:
            conn = await self._connect()
        except StorageError as exc:
            if not self._recovery.should_reset_on_open(exc):
                raise
            logger.warning("Local store %s is unusable (%s): %s", self._path, exc.kind.value, exc)
            return await self.reset(str(exc), error=exc)

        self._conn = conn
        self._ready = True
        logger.debug("Local store %s ready (schema v%d)", self._path, SCHEMA_VERSION)
        return conn

    async def reset(self, reason: str, *, error: StorageError | None = None) -> aiosqlite.Connection:
        """Discard all local data and recreate the schema.

        Requests made while a reset is already running join that reset
        instead of starting another one.

        Raises:
            StorageError: If the recovery policy declines the reset (the
                triggering *error* is re-raised when given).
        """
        if self._reset_task is not None:
            logger.debug("Reset of %s already in progress; joining it", self._path)
            return await self._reset_task

        task = asyncio.create_task(self._reset(reason, error))
        self._reset_task = task
        try:
            return await task
        finally:
            if self._reset_task is task:
                self._reset_task = None

    async def close(self) -> None:
        async with self._lock:
            await self._close_connection()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements in one atomic write transaction.

        Any exception rolls the transaction back. Raw ``sqlite3`` errors are
        re-raised as tagged :class:`StorageError` instances.
        """
        await self.ensure_ready()
        async with self._lock:
            conn = self._current()
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise self._recovery.classify(exc) from exc

            try:
                yield conn
            except BaseException as exc:
                await self._rollback(conn)
                if isinstance(exc, sqlite3.Error):
                    raise self._recovery.classify(exc) from exc
                raise

            try:
                await conn.execute("COMMIT")
            except sqlite3.Error as exc:
                await self._rollback(conn)
                raise self._recovery.classify(exc) from exc

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Read access to the live connection."""
        await self.ensure_ready()
        async with self._lock:
            conn = self._current()
            try:
                yield conn
            except sqlite3.Error as exc:
                raise self._recovery.classify(exc) from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current(self) -> aiosqlite.Connection:
        # A reset may have swapped the connection while we waited for the lock.
        if self._conn is None:
            raise StorageTransactionError(f"local store {self._path} is closed")
        return self._conn

    async def _connect(self) -> aiosqlite.Connection:
        try:
            conn = await aiosqlite.connect(self._path, isolation_level=None)
        except sqlite3.Error as exc:
            raise self._recovery.classify(exc) from exc

        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            await self._apply_schema(conn)
        except BaseException as exc:
            await conn.close()
            if isinstance(exc, sqlite3.Error):
                raise self._recovery.classify(exc) from exc
            raise
        return conn

    async def _apply_schema(self, conn: aiosqlite.Connection) -> None:
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        version = int(row[0]) if row else 0
        tables = await self._table_names(conn)

        if version == 0 and not (tables & REQUIRED_TABLES):
            await conn.executescript(SCHEMA_SQL)
            return

        if version != SCHEMA_VERSION:
            raise StorageSchemaError(f"schema version {version} does not match expected {SCHEMA_VERSION}")
        missing = REQUIRED_TABLES - tables
        if missing:
            raise StorageSchemaError(f"missing tables: {', '.join(sorted(missing))}")

    @staticmethod
    async def _table_names(conn: aiosqlite.Connection) -> set[str]:
        async with conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def _reset(self, reason: str, error: StorageError | None) -> aiosqlite.Connection:
        if not await self._recovery.confirm_reset(reason):
            logger.warning("Reset of local store %s declined: %s", self._path, reason)
            if error is not None:
                raise error
            raise StorageError(f"reset declined: {reason}")

        logger.warning("Resetting local store %s: %s", self._path, reason)
        self._resetting = True
        self._ready = False
        try:
            async with self._lock:
                await self._close_connection()
                self._delete_files()
                conn = await self._connect()
                self._conn = conn
                self._ready = True
        finally:
            self._resetting = False

        self.reset_count += 1
        await self._notify_reset(reason)
        return conn

    async def _close_connection(self) -> None:
        conn, self._conn = self._conn, None
        self._ready = False
        if conn is None:
            return
        try:
            await conn.close()
        except sqlite3.Error as exc:
            logger.debug("Ignoring error while closing %s: %s", self._path, exc)

    def _delete_files(self) -> None:
        if self._path == _MEMORY:
            return
        base = Path(self._path)
        for candidate in (base, *(Path(f"{base}{suffix}") for suffix in _SIDE_FILE_SUFFIXES)):
            candidate.unlink(missing_ok=True)

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            await conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.debug("Rollback failed on %s: %s", self._path, exc)

    async def _notify_reset(self, reason: str) -> None:
        if self._on_reset is None:
            logger.warning("Local data has been cleared: %s", reason)
            return
        result = self._on_reset(reason)
        if inspect.isawaitable(result):
            await result
