"""Exchange of the whole local catalog with a format adapter.

The local schema never leaks to adapters: export builds an
:class:`~curatorsync.contracts.aggregate.Aggregate`, import consumes one.
Import is additive and deduplicating, and runs in a single transaction:

- curators are matched by case-insensitive name;
- concepts by case-insensitive ``(category, value)``;
- restaurants by exact name within the mapped curator; a match only
  refreshes timestamp, description and transcription.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from curatorsync.contracts.aggregate import (
    Aggregate,
    AggregateConcept,
    AggregateCurator,
    AggregateLocation,
    AggregatePhoto,
    AggregateRestaurant,
    FormatAdapter,
    ImportSummary,
)
from curatorsync.contracts.exceptions import EntityValidationError
from curatorsync.contracts.models import curator_identity_key
from curatorsync.store.local_store import LocalStore
from curatorsync.utils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)


class DataTransfer:
    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def export_with(self, adapter: FormatAdapter, opts: dict[str, Any] | None = None) -> Any:
        return adapter.export_data(await self.export_aggregate(), opts)

    async def import_with(self, adapter: FormatAdapter, raw: Any, opts: dict[str, Any] | None = None) -> ImportSummary:
        """Validate *raw* with *adapter*, then import it.

        Raises:
            EntityValidationError: If the adapter rejects *raw*.
        """
        report = adapter.validate(raw)
        if not report.is_valid:
            raise EntityValidationError([report.message or "import data is invalid"])
        return await self.import_aggregate(adapter.import_data(raw, opts))

    async def export_aggregate(self) -> Aggregate:
        async with self._store.connection() as conn:
            curators = [AggregateCurator.model_validate(row) for row in await _rows(conn, "SELECT * FROM curators")]
            concepts = [AggregateConcept.model_validate(row) for row in await _rows(conn, "SELECT * FROM concepts")]
            links: dict[int, list[int]] = {}
            for row in await _rows(conn, "SELECT restaurant_id, concept_id FROM restaurant_concepts ORDER BY id"):
                links.setdefault(row["restaurant_id"], []).append(row["concept_id"])
            restaurants = [
                AggregateRestaurant.model_validate({**row, "concept_ids": links.get(row["id"], [])})
                for row in await _rows(conn, "SELECT * FROM restaurants")
            ]
            locations = [
                AggregateLocation.model_validate(row)
                for row in await _rows(conn, "SELECT restaurant_id, latitude, longitude, address FROM restaurant_locations")
            ]
            photos = [
                AggregatePhoto.model_validate(row)
                for row in await _rows(conn, "SELECT restaurant_id, photo_data FROM restaurant_photos")
            ]
        return Aggregate(
            restaurants=restaurants,
            concepts=concepts,
            curators=curators,
            locations=locations,
            photos=photos,
        )

    async def import_aggregate(self, aggregate: Aggregate) -> ImportSummary:
        summary = ImportSummary()
        async with self._store.transaction() as conn:
            curator_map = await self._import_curators(conn, aggregate.curators, summary)
            concept_map = await self._import_concepts(conn, aggregate.concepts, summary)
            restaurant_map = await self._import_restaurants(conn, aggregate.restaurants, curator_map, summary)
            await self._import_links(conn, aggregate.restaurants, restaurant_map, concept_map)
            await self._import_locations(conn, aggregate.locations, restaurant_map)
            await self._import_photos(conn, aggregate.photos, restaurant_map)
        logger.info(
            "Imported aggregate: %d curators added (%d mapped), %d concepts added (%d mapped), "
            "%d restaurants added, %d updated",
            summary.curators_added,
            summary.curators_mapped,
            summary.concepts_added,
            summary.concepts_mapped,
            summary.restaurants_added,
            summary.restaurants_updated,
        )
        return summary

    @staticmethod
    async def _import_curators(
        conn: aiosqlite.Connection, curators: list[AggregateCurator], summary: ImportSummary
    ) -> dict[int, int]:
        existing: dict[str, dict[str, Any]] = {}
        for row in await _rows(conn, "SELECT id, name, last_active FROM curators ORDER BY id"):
            existing.setdefault(curator_identity_key(row["name"]), row)

        mapping: dict[int, int] = {}
        for curator in curators:
            key = curator_identity_key(curator.name)
            match = existing.get(key)
            if match is not None:
                mapping[curator.id] = match["id"]
                summary.curators_mapped += 1
                current = parse_iso(match["last_active"])
                if curator.last_active and (current is None or curator.last_active > current):
                    await conn.execute(
                        "UPDATE curators SET last_active = ? WHERE id = ?",
                        (to_iso(curator.last_active), match["id"]),
                    )
                continue

            cursor = await conn.execute(
                "INSERT INTO curators (name, last_active, origin, server_id) VALUES (?, ?, ?, ?)",
                (curator.name.strip(), to_iso(curator.last_active or utc_now()), curator.origin.value, curator.server_id),
            )
            new_id = int(cursor.lastrowid)
            await cursor.close()
            mapping[curator.id] = new_id
            existing[key] = {"id": new_id, "name": curator.name, "last_active": None}
            summary.curators_added += 1
        return mapping

    @staticmethod
    async def _import_concepts(
        conn: aiosqlite.Connection, concepts: list[AggregateConcept], summary: ImportSummary
    ) -> dict[int, int]:
        existing: dict[tuple[str, str], int] = {}
        for row in await _rows(conn, "SELECT id, category, value FROM concepts ORDER BY id"):
            existing.setdefault((row["category"].lower(), row["value"].lower()), row["id"])

        mapping: dict[int, int] = {}
        for concept in concepts:
            key = (concept.category.lower(), concept.value.lower())
            if key in existing:
                mapping[concept.id] = existing[key]
                summary.concepts_mapped += 1
                continue
            cursor = await conn.execute(
                "INSERT INTO concepts (category, value, timestamp) VALUES (?, ?, ?)",
                (concept.category, concept.value, to_iso(concept.timestamp or utc_now())),
            )
            new_id = int(cursor.lastrowid)
            await cursor.close()
            mapping[concept.id] = existing[key] = new_id
            summary.concepts_added += 1
        return mapping

    @staticmethod
    async def _import_restaurants(
        conn: aiosqlite.Connection,
        restaurants: list[AggregateRestaurant],
        curator_map: dict[int, int],
        summary: ImportSummary,
    ) -> dict[int, int]:
        mapping: dict[int, int] = {}
        for restaurant in restaurants:
            curator_id = curator_map.get(restaurant.curator_id) if restaurant.curator_id else None
            async with conn.execute(
                "SELECT id FROM restaurants WHERE name = ? AND curator_id IS ? ORDER BY id LIMIT 1",
                (restaurant.name, curator_id),
            ) as cursor:
                row = await cursor.fetchone()

            if row is not None:
                await conn.execute(
                    "UPDATE restaurants SET timestamp = COALESCE(?, timestamp), "
                    "description = CASE WHEN ? != '' THEN ? ELSE description END, "
                    "transcription = CASE WHEN ? != '' THEN ? ELSE transcription END WHERE id = ?",
                    (
                        to_iso(restaurant.timestamp),
                        restaurant.description,
                        restaurant.description,
                        restaurant.transcription,
                        restaurant.transcription,
                        row["id"],
                    ),
                )
                mapping[restaurant.id] = row["id"]
                summary.restaurants_updated += 1
                continue

            cursor = await conn.execute(
                "INSERT INTO restaurants "
                "(name, curator_id, timestamp, transcription, description, source, server_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    restaurant.name,
                    curator_id,
                    to_iso(restaurant.timestamp or utc_now()),
                    restaurant.transcription,
                    restaurant.description,
                    restaurant.source.value,
                    restaurant.server_id,
                ),
            )
            mapping[restaurant.id] = int(cursor.lastrowid)
            await cursor.close()
            summary.restaurants_added += 1
        return mapping

    @staticmethod
    async def _import_links(
        conn: aiosqlite.Connection,
        restaurants: list[AggregateRestaurant],
        restaurant_map: dict[int, int],
        concept_map: dict[int, int],
    ) -> None:
        present = {
            (row["restaurant_id"], row["concept_id"])
            for row in await _rows(conn, "SELECT restaurant_id, concept_id FROM restaurant_concepts")
        }
        new_links: list[tuple[int, int]] = []
        for restaurant in restaurants:
            restaurant_id = restaurant_map.get(restaurant.id)
            if restaurant_id is None:
                continue
            for imported_id in restaurant.concept_ids:
                concept_id = concept_map.get(imported_id)
                if concept_id is None or (restaurant_id, concept_id) in present:
                    continue
                present.add((restaurant_id, concept_id))
                new_links.append((restaurant_id, concept_id))
        if new_links:
            await conn.executemany(
                "INSERT INTO restaurant_concepts (restaurant_id, concept_id) VALUES (?, ?)",
                new_links,
            )

    @staticmethod
    async def _import_locations(
        conn: aiosqlite.Connection, locations: list[AggregateLocation], restaurant_map: dict[int, int]
    ) -> None:
        for location in locations:
            restaurant_id = restaurant_map.get(location.restaurant_id)
            if restaurant_id is None:
                continue
            await conn.execute(
                "INSERT INTO restaurant_locations (restaurant_id, latitude, longitude, address) VALUES (?, ?, ?, ?) "
                "ON CONFLICT (restaurant_id) DO UPDATE SET latitude = excluded.latitude, "
                "longitude = excluded.longitude, address = excluded.address",
                (restaurant_id, location.latitude, location.longitude, location.address),
            )

    @staticmethod
    async def _import_photos(
        conn: aiosqlite.Connection, photos: list[AggregatePhoto], restaurant_map: dict[int, int]
    ) -> None:
        present = {
            (row["restaurant_id"], row["photo_data"])
            for row in await _rows(conn, "SELECT restaurant_id, photo_data FROM restaurant_photos")
        }
        for photo in photos:
            restaurant_id = restaurant_map.get(photo.restaurant_id)
            if restaurant_id is None or (restaurant_id, photo.photo_data) in present:
                continue
            present.add((restaurant_id, photo.photo_data))
            await conn.execute(
                "INSERT INTO restaurant_photos (restaurant_id, photo_data) VALUES (?, ?)",
                (restaurant_id, photo.photo_data),
            )


async def _rows(conn: aiosqlite.Connection, sql: str) -> list[dict[str, Any]]:
    async with conn.execute(sql) as cursor:
        return [dict(row) for row in await cursor.fetchall()]
