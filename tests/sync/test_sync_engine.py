"""Tests for SyncEngine."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from curatorsync.contracts.exceptions import EntityValidationError, NetworkError, StorageTransactionError, SyncError
from curatorsync.contracts.models import ConceptInput, Location, Origin, RestaurantDetail, Source
from curatorsync.contracts.sync import SyncStatus
from curatorsync.remote.client import idempotency_key
from curatorsync.repositories.curators import CuratorRepository
from curatorsync.repositories.restaurants import RestaurantRepository
from curatorsync.settings import SettingsStore
from curatorsync.store.local_store import LocalStore
from curatorsync.sync.engine import SyncEngine, build_payload
from curatorsync.sync.progress import SyncPhase, SyncProgress
from curatorsync.utils import to_iso
from tests.fakes.remote import FakeRemoteClient


class RecordingProgress(SyncProgress):
    def __init__(self) -> None:
        self.events: list[tuple[str, SyncPhase]] = []

    def phase_started(self, phase: SyncPhase, total: int | None = None) -> None:
        self.events.append(("start", phase))

    def record_processed(self, phase: SyncPhase, *, failed: bool = False) -> None:
        self.events.append(("failed" if failed else "record", phase))

    def phase_finished(self, phase: SyncPhase) -> None:
        self.events.append(("done", phase))

    def phase_failed(self, phase: SyncPhase, error: BaseException) -> None:
        self.events.append(("error", phase))


def _record(id: int | str, name: str, **extra: object) -> dict[str, object]:
    return {"id": id, "name": name, **extra}


# ----------------------------------------------------------------------
# Restaurant import
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_end_to_end_batch_with_repeated_name(
    engine: SyncEngine, remote: FakeRemoteClient, restaurants: RestaurantRepository
) -> None:
    remote.records = [_record(1, "Pasta House"), _record(2, "Pasta House")]

    result = await engine.import_restaurants()

    assert (result.added, result.skipped, result.updated) == (1, 1, 0)
    assert await restaurants.count() == 1
    [row] = await restaurants.list_for_index()
    assert row.source == Source.REMOTE
    assert row.server_id == "1"
    assert row.curator_id is None


@pytest.mark.asyncio
async def test_batch_dedup_uses_normalized_names(
    engine: SyncEngine, remote: FakeRemoteClient, restaurants: RestaurantRepository
) -> None:
    remote.records = [_record(1, "Pasta House"), _record(2, "pasta  house")]

    result = await engine.import_restaurants()

    assert result.added == 1
    assert result.skipped == 1
    assert await restaurants.count() == 1


@pytest.mark.asyncio
async def test_punctuation_only_names_do_not_share_a_batch_slot(
    engine: SyncEngine, remote: FakeRemoteClient, restaurants: RestaurantRepository
) -> None:
    remote.records = [_record(1, "!!!"), _record(2, "???"), _record(3, "!!!")]

    result = await engine.import_restaurants()

    assert (result.added, result.skipped) == (3, 0)
    assert await restaurants.count() == 3


@pytest.mark.asyncio
async def test_import_is_idempotent(
    engine: SyncEngine, remote: FakeRemoteClient, restaurants: RestaurantRepository
) -> None:
    remote.records = [
        _record(1, "Pasta House", concepts=[{"category": "Cuisine", "value": "Italian"}]),
        _record(2, "Sushi Bar", location={"latitude": 1.5, "longitude": 2.5, "address": "Main St"}),
    ]

    first = await engine.import_restaurants()
    second = await engine.import_restaurants()

    assert first.added == 2
    assert second.added == 0
    assert second.updated == 2
    assert await restaurants.count() == 2


@pytest.mark.asyncio
async def test_name_match_links_local_row_without_touching_content(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    local_id = await restaurants.save("Cafe Luna", curator_id, description="Our notes")
    remote.records = [_record(77, "cafe luna ", description="Server text")]

    result = await engine.import_restaurants()

    assert result.linked == 1
    assert result.added == 0
    detail = await restaurants.get_by_id(local_id)
    assert detail is not None
    assert detail.server_id == "77"
    assert detail.source == Source.LOCAL
    assert detail.name == "Cafe Luna"
    assert detail.description == "Our notes"
    assert detail.last_synced is not None


@pytest.mark.asyncio
async def test_locally_edited_row_is_not_overwritten(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    restaurant_id = await restaurants.save(
        "Pasta House", curator_id, description="server copy", source=Source.REMOTE, server_id="5"
    )
    await restaurants.update(restaurant_id, "Pasta House", curator_id, description="my edit")
    remote.records = [_record(5, "Pasta House Renamed", description="server changed")]

    result = await engine.import_restaurants()

    assert result.skipped == 1
    assert result.updated == 0
    detail = await restaurants.get_by_id(restaurant_id)
    assert detail is not None
    assert (detail.name, detail.description, detail.source) == ("Pasta House", "my edit", Source.LOCAL)


@pytest.mark.asyncio
async def test_remote_row_is_overwritten_from_server(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    restaurant_id = await restaurants.save(
        "Pasta House",
        curator_id,
        concepts=[ConceptInput(category="Cuisine", value="Italian")],
        source=Source.REMOTE,
        server_id="5",
    )
    remote.records = [
        _record(
            5,
            "Pasta House Trattoria",
            description="Family run",
            concepts=[{"category": "Price", "value": "$$"}],
        )
    ]

    result = await engine.import_restaurants()

    assert result.updated == 1
    detail = await restaurants.get_by_id(restaurant_id)
    assert detail is not None
    assert detail.name == "Pasta House Trattoria"
    assert detail.description == "Family run"
    assert detail.curator_id == curator_id
    assert [(c.category, c.value) for c in detail.concepts] == [("Price", "$$")]


@pytest.mark.asyncio
async def test_name_match_against_other_server_record_is_skipped(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    await restaurants.save("Cafe Luna", curator_id, source=Source.REMOTE, server_id="10")
    remote.records = [_record(11, "Café Luna")]

    result = await engine.import_restaurants()

    assert result.skipped == 1
    assert await restaurants.count() == 1


@pytest.mark.asyncio
async def test_second_record_after_link_is_skipped_with_warning(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
    caplog: pytest.LogCaptureFixture,
) -> None:
    await restaurants.save("Cafe Luna", curator_id)
    remote.records = [_record(77, "Cafe Luna"), _record(78, "cafe luna")]

    with caplog.at_level(logging.WARNING, logger="curatorsync.sync.engine"):
        result = await engine.import_restaurants()

    assert (result.linked, result.skipped, result.added) == (1, 1, 0)
    assert any("78" in r.getMessage() and "77" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_records_without_id_or_name_are_skipped(
    engine: SyncEngine, remote: FakeRemoteClient, restaurants: RestaurantRepository
) -> None:
    remote.records = [{"name": "No Id"}, _record(3, "   "), _record(4, "Real Place")]

    result = await engine.import_restaurants()

    assert result.skipped == 2
    assert result.added == 1
    assert await restaurants.count() == 1


@pytest.mark.asyncio
async def test_new_restaurant_gets_remote_curator(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curators: CuratorRepository,
) -> None:
    remote.records = [_record(1, "Sushi Bar", curator={"id": 9, "name": " Bruno "})]

    await engine.import_restaurants()

    [row] = await restaurants.list_for_index()
    curator = await curators.find_by_server_id("9")
    assert curator is not None
    assert curator.name == "Bruno"
    assert curator.origin == Origin.REMOTE
    assert row.curator_id == curator.id


@pytest.mark.asyncio
async def test_new_restaurant_without_curator_falls_back_to_current(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    remote.records = [_record(1, "Sushi Bar")]

    await engine.import_restaurants()

    [row] = await restaurants.list_for_index()
    assert row.curator_id == curator_id


@pytest.mark.asyncio
async def test_record_failure_is_counted_and_batch_continues(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original = restaurants.save

    async def failing_save(name: str, *args: object, **kwargs: object) -> int:
        if name == "Broken":
            raise EntityValidationError(["boom"])
        return await original(name, *args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(restaurants, "save", failing_save)
    remote.records = [_record(1, "Broken"), _record(2, "Fine")]

    result = await engine.import_restaurants()

    assert result.errors == 1
    assert result.added == 1


def _fail_second_concept_write(restaurants: RestaurantRepository, monkeypatch: pytest.MonkeyPatch) -> None:
    original = restaurants._insert_concept_links
    calls = {"count": 0}

    async def flaky_links(conn: Any, restaurant_id: int, concept_ids: Any) -> None:
        calls["count"] += 1
        if calls["count"] == 2:
            raise StorageTransactionError("transaction committed prematurely")
        await original(conn, restaurant_id, concept_ids)

    monkeypatch.setattr(restaurants, "_insert_concept_links", flaky_links)


@pytest.mark.asyncio
async def test_store_reset_mid_batch_aborts_restaurant_import(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curators: CuratorRepository,
    store: LocalStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    bob = {"id": 9, "name": "Bob"}
    remote.records = [_record(1, "One", curator=bob), _record(2, "Two", curator=bob), _record(3, "Three", curator=bob)]
    _fail_second_concept_write(restaurants, monkeypatch)
    progress = RecordingProgress()
    engine.progress = progress

    with pytest.raises(SyncError, match="reset during the restaurants phase"):
        await engine.import_restaurants()

    assert store.reset_count == 1
    assert await restaurants.count() == 0
    assert await curators.get_all(remove_duplicates=False) == []
    assert progress.events == [
        ("start", SyncPhase.RESTAURANTS),
        ("record", SyncPhase.RESTAURANTS),
        ("failed", SyncPhase.RESTAURANTS),
    ]


@pytest.mark.asyncio
async def test_store_reset_mid_batch_fails_only_restaurant_phase(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    settings: SettingsStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    bob = {"id": 9, "name": "Bob"}
    remote.records = [_record(1, "One", curator=bob), _record(2, "Two", curator=bob), _record(3, "Three", curator=bob)]
    _fail_second_concept_write(restaurants, monkeypatch)

    result = await engine.perform_full_sync()

    assert result.status == SyncStatus.PARTIAL
    assert result.curators_phase.success
    assert not result.restaurants_phase.success
    assert "reset" in (result.restaurants_phase.error or "")
    assert result.export_phase.success
    assert await restaurants.count() == 0
    [entry] = await settings.get_sync_history()
    assert entry.status == SyncStatus.PARTIAL


@pytest.mark.asyncio
async def test_import_reports_progress_per_record(
    engine: SyncEngine, remote: FakeRemoteClient
) -> None:
    progress = RecordingProgress()
    engine.progress = progress
    remote.records = [_record(1, "A"), _record(2, "B")]

    await engine.import_restaurants()

    assert progress.events == [
        ("start", SyncPhase.RESTAURANTS),
        ("record", SyncPhase.RESTAURANTS),
        ("record", SyncPhase.RESTAURANTS),
        ("done", SyncPhase.RESTAURANTS),
    ]


# ----------------------------------------------------------------------
# Curator import
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_import_curators_creates_and_links(
    engine: SyncEngine, remote: FakeRemoteClient, curators: CuratorRepository, curator_id: int
) -> None:
    remote.records = [
        _record(1, "A", curator={"id": 7, "name": "alice"}),
        _record(2, "B", curator={"id": 8, "name": "Bruno"}),
        _record(3, "C", curator={"id": 8, "name": "BRUNO "}),
        _record(4, "D", curator={"name": "   "}),
        _record(5, "E"),
    ]

    result = await engine.import_curators()

    assert (result.created, result.linked, result.skipped) == (1, 1, 1)
    alice = await curators.get(curator_id)
    assert alice is not None
    assert (alice.name, alice.origin, alice.server_id) == ("Alice", Origin.LOCAL, "7")
    assert [c.name for c in await curators.get_all()] == ["Alice", "Bruno"]


@pytest.mark.asyncio
async def test_import_curators_twice_creates_nothing_new(
    engine: SyncEngine, remote: FakeRemoteClient, curators: CuratorRepository
) -> None:
    remote.records = [_record(1, "A", curator={"id": 8, "name": "Bruno"})]

    first = await engine.import_curators()
    second = await engine.import_curators()

    assert first.created == 1
    assert second.created == 0
    assert second.linked == 1
    assert len(await curators.get_all(remove_duplicates=False)) == 1


@pytest.mark.asyncio
async def test_remote_curator_is_renamed_from_server(
    engine: SyncEngine, remote: FakeRemoteClient, curators: CuratorRepository
) -> None:
    curator_id = await curators.save("Bruno", origin=Origin.REMOTE, server_id="8")
    remote.records = [_record(1, "A", curator={"id": 8, "name": "Bruno Lima"})]

    await engine.import_curators()

    curator = await curators.get(curator_id)
    assert curator is not None
    assert curator.name == "Bruno Lima"


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_export_pushes_unsynced_and_marks_them_remote(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    restaurant_id = await restaurants.save(
        "Cafe Luna",
        curator_id,
        concepts=[ConceptInput(category="Cuisine", value="Italian")],
        location=Location(latitude=-23.5, longitude=-46.6, address="Rua A"),
        description="Cozy",
    )
    before = await restaurants.get_by_id(restaurant_id)
    assert before is not None

    result = await engine.export_unsynced()

    assert (result.synced, result.failed) == (1, 0)
    [(payload, key)] = remote.created
    assert payload.name == "Cafe Luna"
    assert payload.curator.name == "Alice"
    assert [(c.category, c.value) for c in payload.concepts] == [("Cuisine", "Italian")]
    assert payload.location is not None and payload.location.address == "Rua A"
    assert key == idempotency_key(restaurant_id, to_iso(before.timestamp))
    after = await restaurants.get_by_id(restaurant_id)
    assert after is not None
    assert (after.source, after.server_id) == (Source.REMOTE, "1000")
    assert await restaurants.get_unsynced() == []


@pytest.mark.asyncio
async def test_export_failure_is_counted_per_record(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    failing = await restaurants.save("Broken", curator_id)
    await restaurants.save("Fine", curator_id)
    remote.fail_create_names = {"Broken"}

    result = await engine.export_unsynced()

    assert (result.synced, result.failed) == (1, 1)
    assert [d.id for d in await restaurants.get_unsynced()] == [failing]


@pytest.mark.asyncio
async def test_export_skips_linked_and_remote_rows(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    curator_id: int,
) -> None:
    linked = await restaurants.save("Linked", curator_id)
    await restaurants.link_server_id(linked, "42")
    await restaurants.save("Remote", curator_id, source=Source.REMOTE, server_id="43")

    result = await engine.export_unsynced()

    assert result.synced == 0
    assert remote.created == []


def test_build_payload_requires_curator() -> None:
    detail = RestaurantDetail(id=1, name="Orphan", curator_id=None)

    with pytest.raises(EntityValidationError):
        build_payload(detail)


# ----------------------------------------------------------------------
# Full sync
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_full_sync_records_success(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    settings: SettingsStore,
    curator_id: int,
) -> None:
    await restaurants.save("Local Only", curator_id)
    remote.records = [_record(1, "Pasta House", curator={"id": 3, "name": "Carla"})]

    result = await engine.perform_full_sync()

    assert result.status == SyncStatus.SUCCESS
    assert result.restaurants.added == 1
    assert result.export.synced == 1
    assert result.finished_at is not None
    assert await settings.get_last_sync_time() == result.finished_at
    [entry] = await settings.get_sync_history()
    assert entry.status == SyncStatus.SUCCESS
    assert entry.message == result.summary()


@pytest.mark.asyncio
async def test_fetch_failure_aborts_only_import_phases(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    settings: SettingsStore,
    curator_id: int,
) -> None:
    await restaurants.save("Local Only", curator_id)
    remote.fail_list = NetworkError("GET /restaurants failed", status_code=503)
    progress = RecordingProgress()
    engine.progress = progress

    result = await engine.perform_full_sync()

    assert result.status == SyncStatus.PARTIAL
    assert not result.curators_phase.success
    assert not result.restaurants_phase.success
    assert result.restaurants_phase.error is not None
    assert result.export_phase.success
    assert result.export.synced == 1
    assert ("error", SyncPhase.RESTAURANTS) in progress.events
    assert await settings.get_last_sync_time() is not None
    [entry] = await settings.get_sync_history()
    assert entry.status == SyncStatus.PARTIAL
    assert "failed phases: curators, restaurants" in entry.message


@pytest.mark.asyncio
async def test_full_sync_with_every_phase_failing_still_records_time(
    engine: SyncEngine,
    remote: FakeRemoteClient,
    restaurants: RestaurantRepository,
    settings: SettingsStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    remote.fail_list = NetworkError("offline")

    async def broken_unsynced() -> list[RestaurantDetail]:
        raise NetworkError("offline")

    monkeypatch.setattr(restaurants, "get_unsynced", broken_unsynced)

    result = await engine.perform_full_sync()

    assert result.status == SyncStatus.ERROR
    assert await settings.get_last_sync_time() is not None
    [entry] = await settings.get_sync_history()
    assert entry.status == SyncStatus.ERROR
