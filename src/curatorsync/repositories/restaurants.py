"""Restaurant persistence.

Every mutation of a restaurant and its dependent rows (concept links,
location, photos) runs in one transaction, so a reader never sees a
restaurant without its dependents or dependents without their restaurant.

Provenance rules enforced here:

- ``update`` always sets ``source = local`` and keeps any ``server_id``;
  that is how a later import recognizes a locally edited copy.
- ``update_sync_status`` is the only path that flips a row to ``remote``.
- ``overwrite_from_remote`` refuses rows that have become local.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import aiosqlite

from curatorsync.contracts.exceptions import EntityNotFoundError, EntityValidationError, SyncError
from curatorsync.contracts.models import (
    Concept,
    ConceptInput,
    Curator,
    Location,
    Photo,
    Restaurant,
    RestaurantDetail,
    RestaurantSummary,
    Source,
)
from curatorsync.repositories.base import with_recovery
from curatorsync.repositories.concepts import ConceptRepository
from curatorsync.store.local_store import LocalStore
from curatorsync.store.schema import DEPENDENT_TABLES
from curatorsync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)


def validate_restaurant(name: str | None, curator_id: int | None, *, require_curator: bool = True) -> None:
    errors: list[str] = []
    if not (name or "").strip():
        errors.append("restaurant name is required")
    if require_curator and curator_id is None:
        errors.append("curator id is required")
    if errors:
        raise EntityValidationError(errors)


class RestaurantRepository:
    def __init__(self, store: LocalStore, concepts: ConceptRepository) -> None:
        self._store = store
        self._concepts = concepts

    @property
    def store(self) -> LocalStore:
        return self._store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_all(
        self,
        *,
        curator_id: int | None = None,
        only_curator: bool = True,
        include_local: bool = True,
        include_remote: bool = True,
        deduplicate: bool = True,
    ) -> list[RestaurantSummary]:
        """List restaurants enriched for display.

        Deduplication by case-insensitive name keeps the first row in id
        order; it only shapes the returned view and never touches storage.
        """
        clauses: list[str] = []
        params: list[object] = []
        if curator_id is not None and only_curator:
            clauses.append("r.curator_id = ?")
            params.append(curator_id)
        sources = [s.value for s, wanted in ((Source.LOCAL, include_local), (Source.REMOTE, include_remote)) if wanted]
        if not sources:
            return []
        if len(sources) == 1:
            clauses.append("r.source = ?")
            params.append(sources[0])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        summaries: list[RestaurantSummary] = []
        seen: set[str] = set()
        async with self._store.connection() as conn:
            async with conn.execute(
                f"SELECT r.*, c.name AS curator_name FROM restaurants r "
                f"LEFT JOIN curators c ON c.id = r.curator_id {where} ORDER BY r.id",
                tuple(params),
            ) as cursor:
                rows = await cursor.fetchall()

            for row in rows:
                key = (row["name"] or "").strip().lower()
                if deduplicate:
                    if key in seen:
                        continue
                    seen.add(key)
                data = dict(row)
                data["curator_name"] = data.get("curator_name") or "Unknown"
                concepts = await self._concepts_for(conn, row["id"])
                summaries.append(
                    RestaurantSummary(
                        **data,
                        concepts=[ConceptInput(category=c.category, value=c.value) for c in concepts],
                        location=await self._location_for(conn, row["id"]),
                        photo_count=await self._photo_count(conn, row["id"]),
                    )
                )
        return summaries

    async def get_by_id(self, restaurant_id: int) -> RestaurantDetail | None:
        async with self._store.connection() as conn:
            return await self._detail(conn, restaurant_id)

    async def get_unsynced(self) -> list[RestaurantDetail]:
        """Local restaurants never pushed to the server."""
        async with self._store.connection() as conn:
            async with conn.execute(
                "SELECT id FROM restaurants WHERE source = ? AND server_id IS NULL ORDER BY id",
                (Source.LOCAL.value,),
            ) as cursor:
                ids = [row["id"] for row in await cursor.fetchall()]
            details = [await self._detail(conn, restaurant_id) for restaurant_id in ids]
        return [detail for detail in details if detail is not None]

    async def list_for_index(self) -> list[Restaurant]:
        async with self._store.connection() as conn:
            async with conn.execute("SELECT * FROM restaurants ORDER BY id") as cursor:
                rows = await cursor.fetchall()
        return [Restaurant.model_validate(dict(row)) for row in rows]

    async def count(self) -> int:
        async with self._store.connection() as conn:
            async with conn.execute("SELECT COUNT(*) AS n FROM restaurants") as cursor:
                row = await cursor.fetchone()
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(
        self,
        name: str,
        curator_id: int | None,
        concepts: Sequence[ConceptInput] = (),
        location: Location | None = None,
        photos: Sequence[str] = (),
        transcription: str = "",
        description: str = "",
        source: Source = Source.LOCAL,
        server_id: str | None = None,
    ) -> int:
        """Create a restaurant with its dependents and return its id.

        Concepts are resolved before the main transaction opens. A retryable
        storage failure resets the store and retries the whole save once.
        Server-sourced rows may be stored without a curator.

        Raises:
            EntityValidationError: If *name* is blank, or *curator_id* is
                missing on a local save.
        """
        validate_restaurant(name, curator_id, require_curator=source == Source.LOCAL)

        async def attempt() -> int:
            concept_ids = await self._concepts.resolve_many(concepts, recover=False)
            async with self._store.transaction() as conn:
                cursor = await conn.execute(
                    "INSERT INTO restaurants "
                    "(name, curator_id, timestamp, transcription, description, source, server_id, last_synced) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        name.strip(),
                        curator_id,
                        to_iso(utc_now()),
                        transcription or "",
                        description or "",
                        source.value,
                        server_id,
                        to_iso(utc_now()) if server_id else None,
                    ),
                )
                restaurant_id = int(cursor.lastrowid)
                await cursor.close()
                await self._insert_concept_links(conn, restaurant_id, concept_ids)
                await self._insert_location(conn, restaurant_id, location)
                await self._insert_photos(conn, restaurant_id, photos)
            return restaurant_id

        restaurant_id = await with_recovery(self._store, attempt, what=f"save of restaurant {name!r}")
        logger.debug("Saved restaurant %d (%s, source=%s)", restaurant_id, name, source.value)
        return restaurant_id

    async def update(
        self,
        restaurant_id: int,
        name: str,
        curator_id: int | None,
        concepts: Sequence[ConceptInput] = (),
        location: Location | None = None,
        photos: Sequence[str] | None = None,
        transcription: str = "",
        description: str = "",
    ) -> int:
        """Apply a local edit.

        The row becomes ``source = local`` while keeping its ``server_id``.
        Concept links and location are replaced; photos are replaced when
        *photos* is given and kept otherwise.

        Raises:
            EntityValidationError: If *name* is blank or *curator_id* is missing.
            EntityNotFoundError: If the restaurant does not exist.
        """
        validate_restaurant(name, curator_id)

        async def attempt() -> int:
            concept_ids = await self._concepts.resolve_many(concepts, recover=False)
            async with self._store.transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE restaurants SET name = ?, curator_id = ?, timestamp = ?, transcription = ?, "
                    "description = ?, source = ? WHERE id = ?",
                    (
                        name.strip(),
                        curator_id,
                        to_iso(utc_now()),
                        transcription or "",
                        description or "",
                        Source.LOCAL.value,
                        restaurant_id,
                    ),
                )
                updated = cursor.rowcount
                await cursor.close()
                if updated == 0:
                    raise EntityNotFoundError(f"restaurant {restaurant_id} does not exist")
                await self._replace_dependents(conn, restaurant_id, concept_ids, location, photos)
            return restaurant_id

        await with_recovery(self._store, attempt, what=f"update of restaurant {restaurant_id}")
        logger.debug("Updated restaurant %d; marked local", restaurant_id)
        return restaurant_id

    async def delete(self, restaurant_id: int) -> bool:
        async with self._store.transaction() as conn:
            for table in DEPENDENT_TABLES:
                await conn.execute(f"DELETE FROM {table} WHERE restaurant_id = ?", (restaurant_id,))
            cursor = await conn.execute("DELETE FROM restaurants WHERE id = ?", (restaurant_id,))
            deleted = cursor.rowcount > 0
            await cursor.close()
        if deleted:
            logger.debug("Deleted restaurant %d", restaurant_id)
        return deleted

    async def update_sync_status(self, restaurant_id: int, server_id: str) -> None:
        """Mark a restaurant as pushed: ``source = remote`` with the assigned *server_id*."""
        async with self._store.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE restaurants SET source = ?, server_id = ?, last_synced = ? WHERE id = ?",
                (Source.REMOTE.value, str(server_id), to_iso(utc_now()), restaurant_id),
            )
            updated = cursor.rowcount
            await cursor.close()
        if updated == 0:
            raise EntityNotFoundError(f"restaurant {restaurant_id} does not exist")

    async def link_server_id(self, restaurant_id: int, server_id: str) -> None:
        """Attach *server_id* without touching content or source."""
        async with self._store.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE restaurants SET server_id = ?, last_synced = ? WHERE id = ?",
                (str(server_id), to_iso(utc_now()), restaurant_id),
            )
            updated = cursor.rowcount
            await cursor.close()
        if updated == 0:
            raise EntityNotFoundError(f"restaurant {restaurant_id} does not exist")

    async def overwrite_from_remote(
        self,
        restaurant_id: int,
        *,
        server_id: str,
        name: str,
        description: str = "",
        transcription: str = "",
        curator_id: int | None = None,
        concepts: Sequence[ConceptInput] = (),
        location: Location | None = None,
    ) -> None:
        """Replace a server-sourced row with the server's copy; photos are kept.

        Raises:
            SyncError: If the row has been edited locally since it was linked.
            EntityNotFoundError: If the row does not exist.
        """
        concept_ids = await self._concepts.resolve_many(concepts)
        async with self._store.transaction() as conn:
            async with conn.execute("SELECT source, curator_id FROM restaurants WHERE id = ?", (restaurant_id,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise EntityNotFoundError(f"restaurant {restaurant_id} does not exist")
            if row["source"] != Source.REMOTE.value:
                raise SyncError(f"restaurant {restaurant_id} has local edits and cannot be overwritten")

            await conn.execute(
                "UPDATE restaurants SET name = ?, description = ?, transcription = ?, curator_id = ?, "
                "server_id = ?, last_synced = ? WHERE id = ?",
                (
                    name.strip(),
                    description or "",
                    transcription or "",
                    curator_id if curator_id is not None else row["curator_id"],
                    str(server_id),
                    to_iso(utc_now()),
                    restaurant_id,
                ),
            )
            await self._replace_dependents(conn, restaurant_id, concept_ids, location, None)

    # ------------------------------------------------------------------
    # Dependent rows
    # ------------------------------------------------------------------

    async def _replace_dependents(
        self,
        conn: aiosqlite.Connection,
        restaurant_id: int,
        concept_ids: Sequence[int],
        location: Location | None,
        photos: Sequence[str] | None,
    ) -> None:
        await conn.execute("DELETE FROM restaurant_concepts WHERE restaurant_id = ?", (restaurant_id,))
        await conn.execute("DELETE FROM restaurant_locations WHERE restaurant_id = ?", (restaurant_id,))
        await self._insert_concept_links(conn, restaurant_id, concept_ids)
        await self._insert_location(conn, restaurant_id, location)
        if photos is not None:
            await conn.execute("DELETE FROM restaurant_photos WHERE restaurant_id = ?", (restaurant_id,))
            await self._insert_photos(conn, restaurant_id, photos)

    async def _insert_concept_links(
        self, conn: aiosqlite.Connection, restaurant_id: int, concept_ids: Sequence[int]
    ) -> None:
        if concept_ids:
            await conn.executemany(
                "INSERT INTO restaurant_concepts (restaurant_id, concept_id) VALUES (?, ?)",
                [(restaurant_id, concept_id) for concept_id in concept_ids],
            )

    @staticmethod
    async def _insert_location(conn: aiosqlite.Connection, restaurant_id: int, location: Location | None) -> None:
        if location is None:
            return
        await conn.execute(
            "INSERT INTO restaurant_locations (restaurant_id, latitude, longitude, address) VALUES (?, ?, ?, ?)",
            (restaurant_id, location.latitude, location.longitude, location.address),
        )

    @staticmethod
    async def _insert_photos(conn: aiosqlite.Connection, restaurant_id: int, photos: Sequence[str]) -> None:
        rows = [(restaurant_id, photo) for photo in photos if photo]
        if rows:
            await conn.executemany(
                "INSERT INTO restaurant_photos (restaurant_id, photo_data) VALUES (?, ?)",
                rows,
            )

    # ------------------------------------------------------------------
    # Aggregate lookups
    # ------------------------------------------------------------------

    async def _detail(self, conn: aiosqlite.Connection, restaurant_id: int) -> RestaurantDetail | None:
        async with conn.execute("SELECT * FROM restaurants WHERE id = ?", (restaurant_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None

        curator: Curator | None = None
        if row["curator_id"] is not None:
            async with conn.execute("SELECT * FROM curators WHERE id = ?", (row["curator_id"],)) as cursor:
                curator_row = await cursor.fetchone()
            if curator_row is not None:
                curator = Curator.model_validate(dict(curator_row))

        async with conn.execute(
            "SELECT * FROM restaurant_photos WHERE restaurant_id = ? ORDER BY id",
            (restaurant_id,),
        ) as cursor:
            photos = [Photo.model_validate(dict(photo)) for photo in await cursor.fetchall()]

        return RestaurantDetail(
            **dict(row),
            curator=curator,
            concepts=await self._concepts_for(conn, restaurant_id),
            location=await self._location_for(conn, restaurant_id),
            photos=photos,
        )

    @staticmethod
    async def _concepts_for(conn: aiosqlite.Connection, restaurant_id: int) -> list[Concept]:
        async with conn.execute(
            "SELECT c.* FROM restaurant_concepts rc JOIN concepts c ON c.id = rc.concept_id "
            "WHERE rc.restaurant_id = ? ORDER BY rc.id",
            (restaurant_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [Concept.model_validate(dict(row)) for row in rows]

    @staticmethod
    async def _location_for(conn: aiosqlite.Connection, restaurant_id: int) -> Location | None:
        async with conn.execute(
            "SELECT latitude, longitude, address FROM restaurant_locations WHERE restaurant_id = ?",
            (restaurant_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return None if row is None else Location.model_validate(dict(row))

    @staticmethod
    async def _photo_count(conn: aiosqlite.Connection, restaurant_id: int) -> int:
        async with conn.execute(
            "SELECT COUNT(*) AS n FROM restaurant_photos WHERE restaurant_id = ?",
            (restaurant_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row["n"]) if row else 0
