"""Composition root.

Every service is built exactly once here and handed to its collaborators by
reference; nothing in the package keeps module-level service instances.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from curatorsync.config import CuratorSyncConfig
from curatorsync.remote.client import RemoteApiClient
from curatorsync.repositories.concepts import ConceptRepository
from curatorsync.repositories.curators import CuratorRepository
from curatorsync.repositories.restaurants import RestaurantRepository
from curatorsync.settings import SettingsStore
from curatorsync.store.local_store import LocalStore, ResetListener
from curatorsync.store.recovery import RecoveryPolicy
from curatorsync.sync.engine import SyncEngine
from curatorsync.sync.progress import SyncProgress
from curatorsync.sync.scheduler import SyncScheduler
from curatorsync.transfer import DataTransfer


@dataclass
class AppContext:
    config: CuratorSyncConfig
    store: LocalStore
    settings: SettingsStore
    concepts: ConceptRepository
    curators: CuratorRepository
    restaurants: RestaurantRepository
    client: RemoteApiClient
    engine: SyncEngine
    scheduler: SyncScheduler
    transfer: DataTransfer

    @classmethod
    def build(
        cls,
        config: CuratorSyncConfig,
        *,
        recovery: RecoveryPolicy | None = None,
        on_reset: ResetListener | None = None,
        progress: SyncProgress | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AppContext:
        store = LocalStore(config.db_path, recovery=recovery, on_reset=on_reset)
        settings = SettingsStore(store)
        concepts = ConceptRepository(store)
        curators = CuratorRepository(store, settings)
        restaurants = RestaurantRepository(store, concepts)
        client = RemoteApiClient(
            config.api_base,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            transport=transport,
        )
        engine = SyncEngine(client, restaurants, curators, settings, progress=progress)
        scheduler = SyncScheduler(engine, settings, startup_delay=config.startup_delay_seconds)
        return cls(
            config=config,
            store=store,
            settings=settings,
            concepts=concepts,
            curators=curators,
            restaurants=restaurants,
            client=client,
            engine=engine,
            scheduler=scheduler,
            transfer=DataTransfer(store),
        )

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        config: CuratorSyncConfig,
        *,
        recovery: RecoveryPolicy | None = None,
        on_reset: ResetListener | None = None,
        progress: SyncProgress | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AsyncIterator[AppContext]:
        """Build the context, open the store, and tear everything down on exit."""
        context = cls.build(config, recovery=recovery, on_reset=on_reset, progress=progress, transport=transport)
        try:
            await context.store.ensure_ready()
            yield context
        finally:
            await context.scheduler.stop()
            await context.client.aclose()
            await context.store.close()
