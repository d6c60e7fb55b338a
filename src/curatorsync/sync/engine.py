"""Local/remote reconciliation engine.

A full sync runs three phases, each isolated from the others' failures:

- curators: derive curator identities from the remote snapshot and link or
  create local curators;
- restaurants: pull the remote snapshot and reconcile it record by record
  (see :mod:`curatorsync.sync.identity`);
- export: push local restaurants that have never been synced.

Per-record failures are counted and never abort a batch; a failed fetch
aborts only its own phase. A local-store reset during an import phase also
aborts that phase, since everything reconciled so far was wiped with it.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from curatorsync.contracts.exceptions import CuratorSyncError, EntityValidationError, SyncError
from curatorsync.contracts.models import Curator, Origin, RestaurantDetail, Source, curator_identity_key
from curatorsync.contracts.remote import (
    RemoteConceptPayload,
    RemoteCurator,
    RemoteCuratorRef,
    RemoteLocationPayload,
    RemoteRestaurant,
    RemoteRestaurantPayload,
)
from curatorsync.contracts.sync import (
    CuratorImportResult,
    ExportResult,
    FullSyncResult,
    PhaseOutcome,
    RestaurantImportResult,
)
from curatorsync.remote.client import RemoteApiClient, idempotency_key
from curatorsync.repositories.curators import CuratorRepository
from curatorsync.repositories.restaurants import RestaurantRepository
from curatorsync.settings import SettingsStore
from curatorsync.sync.identity import (
    RestaurantIndex,
    ResolutionAction,
    normalize_name,
    resolve,
    resolve_curator,
)
from curatorsync.sync.progress import NullSyncProgress, SyncPhase, SyncProgress
from curatorsync.utils import to_iso

logger = logging.getLogger(__name__)

_RECORD_ERRORS = (CuratorSyncError, ValidationError)


class _CuratorCache:
    """Curator lookups for one import pass; newly created curators are added in place."""

    def __init__(self, curators: list[Curator]) -> None:
        self.by_server_id: dict[str, Curator] = {}
        self.by_name: dict[str, Curator] = {}
        for curator in curators:
            self.add(curator)

    def add(self, curator: Curator) -> None:
        if curator.server_id:
            self.by_server_id.setdefault(curator.server_id, curator)
        self.by_name.setdefault(curator.identity_key, curator)

    def replace(self, curator: Curator) -> None:
        if curator.server_id:
            self.by_server_id[curator.server_id] = curator
        self.by_name[curator.identity_key] = curator

    def resolve(self, remote: RemoteCurator) -> Curator | None:
        return resolve_curator(remote, self.by_server_id, self.by_name)


class _BatchState:
    """Per-batch guard: the first record with a given normalized name wins."""

    def __init__(self) -> None:
        self.first_server_id: dict[str, str] = {}
        self.linked_local: dict[str, int] = {}

    def claim(self, key: str, server_id: str) -> str | None:
        """Claim *key*; return the server id that claimed it first, if any."""
        first = self.first_server_id.get(key)
        if first is None:
            self.first_server_id[key] = server_id
        return first


class SyncEngine:
    def __init__(
        self,
        client: RemoteApiClient,
        restaurants: RestaurantRepository,
        curators: CuratorRepository,
        settings: SettingsStore,
        *,
        progress: SyncProgress | None = None,
    ) -> None:
        self._client = client
        self._restaurants = restaurants
        self._curators = curators
        self._settings = settings
        self._progress = progress or NullSyncProgress()

    @property
    def progress(self) -> SyncProgress:
        return self._progress

    @progress.setter
    def progress(self, progress: SyncProgress | None) -> None:
        self._progress = progress or NullSyncProgress()

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def perform_full_sync(self) -> FullSyncResult:
        """Run all three phases, then record the outcome.

        ``lastSyncTime`` and one sync-history entry are written even when
        phases failed, so a failing remote never shortens the retry interval.
        """
        result = FullSyncResult()

        try:
            result.curators = await self.import_curators()
            result.curators_phase = PhaseOutcome(success=True)
        except CuratorSyncError as exc:
            result.curators_phase = self._phase_failed(SyncPhase.CURATORS, exc)

        try:
            result.restaurants = await self.import_restaurants()
            result.restaurants_phase = PhaseOutcome(success=True)
        except CuratorSyncError as exc:
            result.restaurants_phase = self._phase_failed(SyncPhase.RESTAURANTS, exc)

        try:
            result.export = await self.export_unsynced()
            result.export_phase = PhaseOutcome(success=True)
        except CuratorSyncError as exc:
            result.export_phase = self._phase_failed(SyncPhase.EXPORT, exc)

        result.finished_at = await self._settings.update_last_sync_time()
        await self._settings.add_sync_history_entry(result.status, result.summary())
        logger.info("Sync finished (%s): %s", result.status.value, result.summary())
        return result

    def _phase_failed(self, phase: SyncPhase, exc: CuratorSyncError) -> PhaseOutcome:
        logger.warning("%s phase failed: %s", phase.value, exc)
        self._progress.phase_failed(phase, exc)
        return PhaseOutcome(success=False, error=str(exc))

    def _ensure_store_not_reset(self, phase: SyncPhase, resets: int) -> None:
        if self._restaurants.store.reset_count != resets:
            raise SyncError(
                f"local store was reset during the {phase.value} phase; the rest of the batch was not imported"
            )

    # ------------------------------------------------------------------
    # Phase A: curators
    # ------------------------------------------------------------------

    async def import_curators(self) -> CuratorImportResult:
        """Link or create a local curator for every curator named by the remote snapshot.

        Never creates a second curator for a name that already resolves.
        """
        records = await self._client.list_restaurants()

        result = CuratorImportResult()
        derived: dict[str, RemoteCurator] = {}
        for record in records:
            remote = record.curator
            if remote is None:
                continue
            key = curator_identity_key(remote.name)
            if not key:
                result.skipped += 1
                continue
            derived.setdefault(key, remote)

        await self._curators.get_all(remove_duplicates=True)
        cache = _CuratorCache(await self._curators.get_all(remove_duplicates=False))
        resets = self._restaurants.store.reset_count

        self._progress.phase_started(SyncPhase.CURATORS, total=len(derived))
        for remote in derived.values():
            failed = False
            try:
                curator_id, created = await self._link_or_create_curator(remote, cache)
            except CuratorSyncError as exc:
                logger.warning("Skipping remote curator %r: %s", remote.clean_name, exc)
                result.skipped += 1
                failed = True
            else:
                if created:
                    result.created += 1
                else:
                    result.linked += 1
                if curator_id not in result.curator_ids:
                    result.curator_ids.append(curator_id)
            self._progress.record_processed(SyncPhase.CURATORS, failed=failed)
            self._ensure_store_not_reset(SyncPhase.CURATORS, resets)

        await self._curators.get_all(remove_duplicates=True)
        self._progress.phase_finished(SyncPhase.CURATORS)
        logger.info(
            "Curator import: %d created, %d linked, %d skipped",
            result.created,
            result.linked,
            result.skipped,
        )
        return result

    async def _link_or_create_curator(self, remote: RemoteCurator, cache: _CuratorCache) -> tuple[int, bool]:
        match = cache.resolve(remote)
        if match is None:
            curator_id = await self._curators.save(remote.clean_name, origin=Origin.REMOTE, server_id=remote.server_id)
            cache.add(
                Curator(id=curator_id, name=remote.clean_name, origin=Origin.REMOTE, server_id=remote.server_id)
            )
            logger.debug("Created curator %d for remote %r", curator_id, remote.clean_name)
            return curator_id, True

        server_id = remote.server_id or match.server_id
        if match.origin == Origin.LOCAL:
            # Local curators keep their own name; only the linkage is recorded.
            if server_id != match.server_id:
                await self._curators.update_link(match.id, server_id=server_id)
                cache.replace(match.model_copy(update={"server_id": server_id}))
        elif server_id != match.server_id or remote.clean_name != match.name:
            await self._curators.update_link(match.id, name=remote.clean_name, server_id=server_id)
            cache.replace(match.model_copy(update={"name": remote.clean_name, "server_id": server_id}))
        logger.debug("Linked remote curator %r to local curator %d", remote.clean_name, match.id)
        return match.id, False

    # ------------------------------------------------------------------
    # Phase B: restaurants
    # ------------------------------------------------------------------

    async def import_restaurants(self) -> RestaurantImportResult:
        """Reconcile the remote restaurant snapshot with the local catalog.

        Local edits always win: a row edited since its last sync is never
        overwritten, and a name match only attaches linkage.
        """
        records = await self._client.list_restaurants()

        index = RestaurantIndex.build(await self._restaurants.list_for_index())
        cache = _CuratorCache(await self._curators.get_all(remove_duplicates=False))
        current = await self._curators.get_current()
        resets = self._restaurants.store.reset_count
        batch = _BatchState()
        result = RestaurantImportResult()

        self._progress.phase_started(SyncPhase.RESTAURANTS, total=len(records))
        for record in records:
            failed = False
            try:
                await self._import_restaurant(record, index, cache, current, batch, result)
            except _RECORD_ERRORS as exc:
                logger.warning("Failed to import remote restaurant %s (%r): %s", record.server_id, record.name, exc)
                result.errors += 1
                failed = True
            self._progress.record_processed(SyncPhase.RESTAURANTS, failed=failed)
            # The index and curator cache describe the wiped database after a reset.
            self._ensure_store_not_reset(SyncPhase.RESTAURANTS, resets)

        self._progress.phase_finished(SyncPhase.RESTAURANTS)
        logger.info(
            "Restaurant import: %d added, %d updated, %d linked, %d skipped, %d errors",
            result.added,
            result.updated,
            result.linked,
            result.skipped,
            result.errors,
        )
        return result

    async def _import_restaurant(
        self,
        record: RemoteRestaurant,
        index: RestaurantIndex,
        cache: _CuratorCache,
        current: Curator | None,
        batch: _BatchState,
        result: RestaurantImportResult,
    ) -> None:
        server_id = record.server_id
        name = (record.name or "").strip()
        if not server_id or not name:
            logger.debug("Skipping remote record without id or name: %r", record.id)
            result.skipped += 1
            return

        key = normalize_name(name)
        # Names made only of punctuation normalize to "" and share no identity.
        first = batch.claim(key, server_id) if key else None
        if first is not None:
            linked_id = batch.linked_local.get(key)
            if linked_id is not None:
                logger.warning(
                    "Remote restaurant %s (%r) also matches local restaurant %d, already linked to %s; skipped",
                    server_id,
                    name,
                    linked_id,
                    first,
                )
            else:
                logger.debug("Skipping %s (%r): name already processed in this batch", server_id, name)
            result.skipped += 1
            return

        resolution = resolve(record, index)
        target = resolution.target

        if resolution.action == ResolutionAction.OVERWRITE_EXISTING and target is not None:
            curator = await self._curator_for(record, cache, None)
            await self._restaurants.overwrite_from_remote(
                target.id,
                server_id=server_id,
                name=name,
                description=record.description or "",
                transcription=record.transcription or "",
                curator_id=curator.id if curator else None,
                concepts=record.local_concepts(),
                location=record.local_location(),
            )
            index.replace(target.model_copy(update={"name": name}))
            result.updated += 1
            logger.debug("Overwrote restaurant %d from remote %s", target.id, server_id)

        elif resolution.action == ResolutionAction.LINK_EXISTING and target is not None:
            await self._restaurants.link_server_id(target.id, server_id)
            index.replace(target.model_copy(update={"server_id": server_id}))
            batch.linked_local[key] = target.id
            result.linked += 1
            logger.debug("Linked local restaurant %d to remote %s", target.id, server_id)

        elif resolution.action in (ResolutionAction.SKIP_DIVERGED, ResolutionAction.SKIP_DUPLICATE):
            logger.debug("Skipping remote %s (%r): %s", server_id, name, resolution.reason)
            result.skipped += 1

        else:
            curator = await self._curator_for(record, cache, current)
            restaurant_id = await self._restaurants.save(
                name,
                curator.id if curator else None,
                concepts=record.local_concepts(),
                location=record.local_location(),
                transcription=record.transcription or "",
                description=record.description or "",
                source=Source.REMOTE,
                server_id=server_id,
            )
            created = await self._restaurants.get_by_id(restaurant_id)
            if created is not None:
                index.add(created)
            result.added += 1
            logger.debug("Created restaurant %d from remote %s", restaurant_id, server_id)

    async def _curator_for(
        self,
        record: RemoteRestaurant,
        cache: _CuratorCache,
        fallback: Curator | None,
    ) -> Curator | None:
        remote = record.curator
        if remote is None or not remote.clean_name:
            return fallback
        match = cache.resolve(remote)
        if match is not None:
            return match
        curator_id = await self._curators.save(remote.clean_name, origin=Origin.REMOTE, server_id=remote.server_id)
        curator = Curator(id=curator_id, name=remote.clean_name, origin=Origin.REMOTE, server_id=remote.server_id)
        cache.add(curator)
        return curator

    # ------------------------------------------------------------------
    # Phase C: export
    # ------------------------------------------------------------------

    async def export_unsynced(self) -> ExportResult:
        """Push every local restaurant that has no server id yet."""
        pending = await self._restaurants.get_unsynced()
        result = ExportResult()

        self._progress.phase_started(SyncPhase.EXPORT, total=len(pending))
        for detail in pending:
            failed = False
            try:
                payload = build_payload(detail)
                server_id = await self._client.create_restaurant(
                    payload,
                    idempotency_key=idempotency_key(detail.id, to_iso(detail.timestamp)),
                )
                await self._restaurants.update_sync_status(detail.id, server_id)
            except _RECORD_ERRORS as exc:
                logger.warning("Failed to export restaurant %d (%r): %s", detail.id, detail.name, exc)
                result.failed += 1
                failed = True
            else:
                logger.debug("Exported restaurant %d as remote %s", detail.id, server_id)
                result.synced += 1
            self._progress.record_processed(SyncPhase.EXPORT, failed=failed)

        self._progress.phase_finished(SyncPhase.EXPORT)
        logger.info("Export: %d synced, %d failed", result.synced, result.failed)
        return result


def build_payload(detail: RestaurantDetail) -> RemoteRestaurantPayload:
    if detail.curator is None:
        raise EntityValidationError([f"restaurant {detail.id} has no curator"])
    location = None
    if detail.location is not None:
        location = RemoteLocationPayload(
            latitude=detail.location.latitude,
            longitude=detail.location.longitude,
            address=detail.location.address or "",
        )
    return RemoteRestaurantPayload(
        name=detail.name,
        description=detail.description,
        transcription=detail.transcription,
        timestamp=to_iso(detail.timestamp),
        curator=RemoteCuratorRef(name=detail.curator.name, id=detail.curator.server_id),
        concepts=[RemoteConceptPayload(category=c.category, value=c.value) for c in detail.concepts],
        location=location,
    )
