"""Curator persistence, identity lookups, and duplicate cleanup."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from curatorsync.contracts.exceptions import EntityNotFoundError, EntityValidationError
from curatorsync.contracts.models import Curator, Origin, curator_identity_key
from curatorsync.repositories.base import placeholders
from curatorsync.settings import CURRENT_CURATOR_KEY, SettingsStore
from curatorsync.store.local_store import LocalStore
from curatorsync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)

_UNSET = object()


def _preference(curator: Curator) -> tuple[bool, bool, float, int]:
    # Sorts the preferred record of a duplicate group first.
    last_active = curator.last_active.timestamp() if curator.last_active else float("-inf")
    return (curator.server_id is None, curator.origin != Origin.LOCAL, -last_active, curator.id)


def pick_keeper(group: Sequence[Curator]) -> Curator:
    """Choose the record that survives duplicate cleanup.

    A record linked to the server wins over an unlinked one, a local record
    over a remote one, then the most recently active.
    """
    return sorted(group, key=_preference)[0]


class CuratorRepository:
    def __init__(self, store: LocalStore, settings: SettingsStore) -> None:
        self._store = store
        self._settings = settings

    async def save(self, name: str, *, origin: Origin = Origin.LOCAL, server_id: str | None = None) -> int:
        clean = (name or "").strip()
        if not clean:
            raise EntityValidationError(["curator name is required"])
        async with self._store.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO curators (name, last_active, origin, server_id) VALUES (?, ?, ?, ?)",
                (clean, to_iso(utc_now()), origin.value, server_id),
            )
            curator_id = int(cursor.lastrowid)
            await cursor.close()
        logger.debug("Created curator %d (%s, origin=%s)", curator_id, clean, origin.value)
        return curator_id

    async def get(self, curator_id: int) -> Curator | None:
        async with self._store.connection() as conn:
            async with conn.execute("SELECT * FROM curators WHERE id = ?", (curator_id,)) as cursor:
                row = await cursor.fetchone()
        return None if row is None else Curator.model_validate(dict(row))

    async def find_by_server_id(self, server_id: str) -> Curator | None:
        async with self._store.connection() as conn:
            async with conn.execute(
                "SELECT * FROM curators WHERE server_id = ? ORDER BY id LIMIT 1",
                (str(server_id),),
            ) as cursor:
                row = await cursor.fetchone()
        return None if row is None else Curator.model_validate(dict(row))

    async def find_by_name(self, name: str) -> Curator | None:
        key = curator_identity_key(name)
        if not key:
            return None
        matches = [c for c in await self._load_all() if c.identity_key == key]
        return pick_keeper(matches) if matches else None

    async def get_all(self, *, remove_duplicates: bool = True) -> list[Curator]:
        """Return one curator per identity key.

        With *remove_duplicates* the losing records are deleted and their
        restaurants re-pointed to the keeper, in a single transaction.
        """
        groups: dict[str, list[Curator]] = {}
        for curator in await self._load_all():
            groups.setdefault(curator.identity_key, []).append(curator)

        keepers: list[Curator] = []
        repoint: dict[int, list[int]] = {}
        for group in groups.values():
            keeper = pick_keeper(group)
            keepers.append(keeper)
            losers = [c.id for c in group if c.id != keeper.id]
            if losers:
                repoint[keeper.id] = losers

        if remove_duplicates and repoint:
            await self._merge(repoint)

        return sorted(keepers, key=lambda c: c.name.lower())

    async def update_link(
        self,
        curator_id: int,
        *,
        name: str | None = None,
        origin: Origin | None = None,
        server_id: str | None | object = _UNSET,
    ) -> None:
        assignments: list[str] = []
        params: list[object] = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name.strip())
        if origin is not None:
            assignments.append("origin = ?")
            params.append(origin.value)
        if server_id is not _UNSET:
            assignments.append("server_id = ?")
            params.append(server_id)
        if not assignments:
            return

        async with self._store.transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE curators SET {', '.join(assignments)} WHERE id = ?",
                (*params, curator_id),
            )
            updated = cursor.rowcount
            await cursor.close()
        if updated == 0:
            raise EntityNotFoundError(f"curator {curator_id} does not exist")

    async def get_current(self) -> Curator | None:
        """The curator stored under ``currentCurator``, else the most recently active one."""
        current_id = await self._settings.get_setting(CURRENT_CURATOR_KEY)
        if current_id is not None:
            try:
                curator = await self.get(int(current_id))
            except (TypeError, ValueError):
                curator = None
            if curator is not None:
                return curator

        async with self._store.connection() as conn:
            async with conn.execute(
                "SELECT * FROM curators ORDER BY last_active IS NULL, last_active DESC, id LIMIT 1"
            ) as cursor:
                row = await cursor.fetchone()
        return None if row is None else Curator.model_validate(dict(row))

    async def set_current(self, curator_id: int) -> None:
        await self.touch(curator_id)
        await self._settings.update_setting(CURRENT_CURATOR_KEY, curator_id)

    async def touch(self, curator_id: int) -> None:
        async with self._store.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE curators SET last_active = ? WHERE id = ?",
                (to_iso(utc_now()), curator_id),
            )
            updated = cursor.rowcount
            await cursor.close()
        if updated == 0:
            raise EntityNotFoundError(f"curator {curator_id} does not exist")

    async def _load_all(self) -> list[Curator]:
        async with self._store.connection() as conn:
            async with conn.execute("SELECT * FROM curators ORDER BY id") as cursor:
                rows = await cursor.fetchall()
        return [Curator.model_validate(dict(row)) for row in rows]

    async def _merge(self, repoint: dict[int, list[int]]) -> None:
        async with self._store.transaction() as conn:
            for keeper_id, losers in repoint.items():
                marks = placeholders(len(losers))
                await conn.execute(
                    f"UPDATE restaurants SET curator_id = ? WHERE curator_id IN ({marks})",
                    (keeper_id, *losers),
                )
                await conn.execute(f"DELETE FROM curators WHERE id IN ({marks})", tuple(losers))
                logger.info("Merged duplicate curators %s into %d", losers, keeper_id)

        current_id = await self._settings.get_setting(CURRENT_CURATOR_KEY)
        for keeper_id, losers in repoint.items():
            if current_id in losers:
                await self._settings.update_setting(CURRENT_CURATOR_KEY, keeper_id)
