"""Sync result and settings contracts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

MIN_SYNC_INTERVAL_MINUTES = 5
DEFAULT_SYNC_INTERVAL_MINUTES = 30
SYNC_HISTORY_LIMIT = 10


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class CuratorImportResult(BaseModel):
    created: int = 0
    linked: int = 0
    skipped: int = 0
    curator_ids: list[int] = Field(default_factory=list)


class RestaurantImportResult(BaseModel):
    added: int = 0
    updated: int = 0
    linked: int = 0
    skipped: int = 0
    errors: int = 0


class ExportResult(BaseModel):
    synced: int = 0
    failed: int = 0


class PhaseOutcome(BaseModel):
    """Whether a sync phase completed, and the error that stopped it if not."""

    success: bool = False
    error: str | None = None


class FullSyncResult(BaseModel):
    curators: CuratorImportResult = Field(default_factory=CuratorImportResult)
    restaurants: RestaurantImportResult = Field(default_factory=RestaurantImportResult)
    export: ExportResult = Field(default_factory=ExportResult)
    curators_phase: PhaseOutcome = Field(default_factory=PhaseOutcome)
    restaurants_phase: PhaseOutcome = Field(default_factory=PhaseOutcome)
    export_phase: PhaseOutcome = Field(default_factory=PhaseOutcome)
    finished_at: datetime | None = None

    @property
    def status(self) -> SyncStatus:
        outcomes = (self.curators_phase, self.restaurants_phase, self.export_phase)
        succeeded = sum(1 for outcome in outcomes if outcome.success)
        if succeeded == len(outcomes):
            return SyncStatus.SUCCESS
        if succeeded == 0:
            return SyncStatus.ERROR
        return SyncStatus.PARTIAL

    def summary(self) -> str:
        parts = [
            f"Imported {self.restaurants.added} new, updated {self.restaurants.updated}",
            f"exported {self.export.synced}",
        ]
        failed = [
            name
            for name, outcome in (
                ("curators", self.curators_phase),
                ("restaurants", self.restaurants_phase),
                ("export", self.export_phase),
            )
            if not outcome.success
        ]
        if failed:
            parts.append(f"failed phases: {', '.join(failed)}")
        return "; ".join(parts)


class SyncHistoryEntry(BaseModel):
    timestamp: str
    status: SyncStatus
    message: str


class SyncSettings(BaseModel):
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    sync_on_startup: bool = True

    @field_validator("sync_interval_minutes", mode="before")
    @classmethod
    def _clamp_interval(cls, value: object) -> int:
        return clamp_interval(value)


def clamp_interval(minutes: object) -> int:
    """Clamp a requested sync interval to the supported minimum.

    ``None``, zero and unparsable values fall back to the default interval.
    """
    try:
        value = int(minutes)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return DEFAULT_SYNC_INTERVAL_MINUTES
    if value == 0:
        return DEFAULT_SYNC_INTERVAL_MINUTES
    return max(MIN_SYNC_INTERVAL_MINUTES, value)
