from __future__ import annotations

from typing import Any

import pytest

from curatorsync.contracts.exceptions import StorageTransactionError
from curatorsync.contracts.models import ConceptInput
from curatorsync.repositories.concepts import ConceptRepository
from curatorsync.store.local_store import LocalStore


@pytest.mark.asyncio
async def test_save_concept_is_unique_per_category_and_value(concepts: ConceptRepository) -> None:
    first = await concepts.save_concept("Cuisine", "Italian")
    again = await concepts.save_concept("Cuisine", "Italian")
    other = await concepts.save_concept("Cuisine", "Thai")

    assert first == again
    assert other != first
    assert len(await concepts.get_all()) == 2


@pytest.mark.asyncio
async def test_listings(concepts: ConceptRepository) -> None:
    await concepts.save_concept("Price", "$$")
    await concepts.save_concept("Cuisine", "Thai")
    await concepts.save_concept("Cuisine", "Italian")

    assert await concepts.get_categories() == ["Cuisine", "Price"]
    assert await concepts.get_values("Cuisine") == ["Italian", "Thai"]
    assert await concepts.get_values("Mood") == []


@pytest.mark.asyncio
async def test_resolve_many_skips_incomplete_and_repeated(concepts: ConceptRepository) -> None:
    ids = await concepts.resolve_many(
        [
            ConceptInput(category="Cuisine", value="Thai"),
            ConceptInput(category="", value="Orphan"),
            ConceptInput(category="Cuisine", value="Thai"),
            ConceptInput(category="Mood", value="Calm"),
        ]
    )

    assert len(ids) == 2
    assert len(set(ids)) == 2


@pytest.mark.asyncio
async def test_save_concept_retries_once_after_reset(
    concepts: ConceptRepository, store: LocalStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    original = ConceptRepository.upsert
    calls = {"count": 0}

    async def flaky(conn: Any, category: str, value: str) -> int:
        calls["count"] += 1
        if calls["count"] == 1:
            raise StorageTransactionError("database is locked")
        return await original(conn, category, value)

    monkeypatch.setattr(concepts, "upsert", flaky)

    concept_id = await concepts.save_concept("Cuisine", "Thai")

    assert store.reset_count == 1
    assert calls["count"] == 2
    assert [c.id for c in await concepts.get_all()] == [concept_id]
