"""Data contracts shared across curatorsync layers."""

from curatorsync.contracts.exceptions import (
    ConfigError,
    CuratorSyncError,
    EntityNotFoundError,
    EntityValidationError,
    NetworkError,
    RemoteResponseError,
    StorageConstraintError,
    StorageError,
    StorageErrorKind,
    StorageSchemaError,
    StorageTransactionError,
    SyncError,
    SyncInProgressError,
)
from curatorsync.contracts.models import (
    Concept,
    ConceptInput,
    Curator,
    Location,
    Origin,
    Photo,
    Restaurant,
    RestaurantDetail,
    RestaurantSummary,
    Source,
)
from curatorsync.contracts.sync import (
    CuratorImportResult,
    ExportResult,
    FullSyncResult,
    PhaseOutcome,
    RestaurantImportResult,
    SyncHistoryEntry,
    SyncSettings,
    SyncStatus,
)

__all__ = [
    "Concept",
    "ConceptInput",
    "ConfigError",
    "Curator",
    "CuratorImportResult",
    "CuratorSyncError",
    "EntityNotFoundError",
    "EntityValidationError",
    "ExportResult",
    "FullSyncResult",
    "Location",
    "NetworkError",
    "Origin",
    "PhaseOutcome",
    "Photo",
    "RemoteResponseError",
    "Restaurant",
    "RestaurantDetail",
    "RestaurantImportResult",
    "RestaurantSummary",
    "Source",
    "StorageConstraintError",
    "StorageError",
    "StorageErrorKind",
    "StorageSchemaError",
    "StorageTransactionError",
    "SyncError",
    "SyncHistoryEntry",
    "SyncInProgressError",
    "SyncSettings",
    "SyncStatus",
]
