"""Shared test fixtures for curatorsync tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from curatorsync.repositories.concepts import ConceptRepository
from curatorsync.repositories.curators import CuratorRepository
from curatorsync.repositories.restaurants import RestaurantRepository
from curatorsync.settings import SettingsStore
from curatorsync.store.local_store import LocalStore
from curatorsync.sync.engine import SyncEngine
from tests.fakes.remote import FakeRemoteClient


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "catalog.db"


@pytest_asyncio.fixture
async def store(db_path: Path) -> AsyncIterator[LocalStore]:
    local_store = LocalStore(db_path)
    await local_store.ensure_ready()
    yield local_store
    await local_store.close()


@pytest.fixture
def settings(store: LocalStore) -> SettingsStore:
    return SettingsStore(store)


@pytest.fixture
def concepts(store: LocalStore) -> ConceptRepository:
    return ConceptRepository(store)


@pytest.fixture
def curators(store: LocalStore, settings: SettingsStore) -> CuratorRepository:
    return CuratorRepository(store, settings)


@pytest.fixture
def restaurants(store: LocalStore, concepts: ConceptRepository) -> RestaurantRepository:
    return RestaurantRepository(store, concepts)


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def engine(
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curators: CuratorRepository,
    settings: SettingsStore,
) -> SyncEngine:
    return SyncEngine(remote, restaurants, curators, settings)  # type: ignore[arg-type]


@pytest_asyncio.fixture
async def curator_id(curators: CuratorRepository) -> int:
    return await curators.save("Alice")
