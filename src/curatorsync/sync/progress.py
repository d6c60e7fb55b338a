"""Sync progress events.

:class:`SyncEngine` reports each phase (curators, restaurants, export) as it
walks the remote snapshot or the unsynced backlog. A record that could not be
reconciled is reported with ``failed=True``; a phase aborted by a fetch error
is reported through :meth:`SyncProgress.phase_failed`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class SyncPhase(str, Enum):
    CURATORS = "curators"
    RESTAURANTS = "restaurants"
    EXPORT = "export"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class SyncProgress(ABC):
    """Receives phase and record events from the sync engine."""

    @abstractmethod
    def phase_started(self, phase: SyncPhase, total: int | None = None) -> None:
        """*total* is the number of records the phase will visit, when known."""
        ...  # pragma: no cover

    @abstractmethod
    def record_processed(self, phase: SyncPhase, *, failed: bool = False) -> None:
        ...  # pragma: no cover

    @abstractmethod
    def phase_finished(self, phase: SyncPhase) -> None:
        ...  # pragma: no cover

    @abstractmethod
    def phase_failed(self, phase: SyncPhase, error: BaseException) -> None:
        """The phase stopped before visiting its records, usually a failed fetch."""
        ...  # pragma: no cover


class NullSyncProgress(SyncProgress):
    def phase_started(self, phase: SyncPhase, total: int | None = None) -> None:
        pass

    def record_processed(self, phase: SyncPhase, *, failed: bool = False) -> None:
        pass

    def phase_finished(self, phase: SyncPhase) -> None:
        pass

    def phase_failed(self, phase: SyncPhase, error: BaseException) -> None:
        pass
