"""Public API surface for curatorsync."""

__version__ = "0.1.0"

from curatorsync.config import CuratorSyncConfig, load_config
from curatorsync.context import AppContext
from curatorsync.contracts import (
    ConfigError,
    CuratorImportResult,
    CuratorSyncError,
    EntityNotFoundError,
    EntityValidationError,
    ExportResult,
    FullSyncResult,
    NetworkError,
    RestaurantImportResult,
    StorageError,
    StorageErrorKind,
    SyncError,
    SyncInProgressError,
    SyncStatus,
)
from curatorsync.store import LocalStore, RecoveryPolicy
from curatorsync.sync import SyncEngine, SyncScheduler

__all__ = [
    "AppContext",
    "ConfigError",
    "CuratorImportResult",
    "CuratorSyncConfig",
    "CuratorSyncError",
    "EntityNotFoundError",
    "EntityValidationError",
    "ExportResult",
    "FullSyncResult",
    "LocalStore",
    "NetworkError",
    "RecoveryPolicy",
    "RestaurantImportResult",
    "StorageError",
    "StorageErrorKind",
    "SyncEngine",
    "SyncError",
    "SyncInProgressError",
    "SyncScheduler",
    "SyncStatus",
    "__version__",
    "load_config",
]
