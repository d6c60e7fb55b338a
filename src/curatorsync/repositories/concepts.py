"""Concept persistence: ``(category, value)`` upsert and listings."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import aiosqlite

from curatorsync.contracts.models import Concept, ConceptInput
from curatorsync.repositories.base import with_recovery
from curatorsync.store.local_store import LocalStore
from curatorsync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class ConceptRepository:
    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def save_concept(self, category: str, value: str) -> int:
        """Return the id of the ``(category, value)`` concept, creating it if absent.

        A retryable storage failure resets the store and retries once.
        """

        async def attempt() -> int:
            async with self._store.transaction() as conn:
                return await self.upsert(conn, category, value)

        return await with_recovery(self._store, attempt, what=f"save of concept {category}/{value}")

    async def resolve_many(self, concepts: Iterable[ConceptInput], *, recover: bool = True) -> list[int]:
        """Resolve each complete concept to an id, in order, without duplicates.

        Concepts lacking a category or a value are ignored.
        """
        ids: list[int] = []
        for concept in concepts:
            if not concept.is_complete:
                logger.debug("Ignoring incomplete concept %r/%r", concept.category, concept.value)
                continue
            if recover:
                concept_id = await self.save_concept(concept.category, concept.value)
            else:
                async with self._store.transaction() as conn:
                    concept_id = await self.upsert(conn, concept.category, concept.value)
            if concept_id not in ids:
                ids.append(concept_id)
        return ids

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, category: str, value: str) -> int:
        """Lookup-then-insert on an open transaction."""
        async with conn.execute(
            "SELECT id FROM concepts WHERE category = ? AND value = ?",
            (category, value),
        ) as cursor:
            row = await cursor.fetchone()
        if row is not None:
            return int(row["id"])

        cursor = await conn.execute(
            "INSERT INTO concepts (category, value, timestamp) VALUES (?, ?, ?)",
            (category, value, to_iso(utc_now())),
        )
        concept_id = int(cursor.lastrowid)
        await cursor.close()
        return concept_id

    async def get_categories(self) -> list[str]:
        async with self._store.connection() as conn:
            async with conn.execute("SELECT DISTINCT category FROM concepts ORDER BY category") as cursor:
                rows = await cursor.fetchall()
        return [row["category"] for row in rows]

    async def get_values(self, category: str) -> list[str]:
        async with self._store.connection() as conn:
            async with conn.execute(
                "SELECT value FROM concepts WHERE category = ? ORDER BY value",
                (category,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [row["value"] for row in rows]

    async def get_all(self) -> list[Concept]:
        async with self._store.connection() as conn:
            async with conn.execute("SELECT * FROM concepts ORDER BY category, value") as cursor:
                rows = await cursor.fetchall()
        return [Concept.model_validate(dict(row)) for row in rows]
