"""Sync exports."""

from curatorsync.sync.engine import SyncEngine
from curatorsync.sync.identity import Resolution, ResolutionAction, RestaurantIndex, normalize_name, resolve
from curatorsync.sync.progress import NullSyncProgress, SyncPhase, SyncProgress
from curatorsync.sync.scheduler import SchedulerState, SyncScheduler

__all__ = [
    "NullSyncProgress",
    "Resolution",
    "ResolutionAction",
    "RestaurantIndex",
    "SchedulerState",
    "SyncEngine",
    "SyncPhase",
    "SyncProgress",
    "SyncScheduler",
    "normalize_name",
    "resolve",
]
