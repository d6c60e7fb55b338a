"""Exception hierarchy for curatorsync.

All curatorsync exceptions inherit from :class:`CuratorSyncError`, making it
easy to catch any library error with a single ``except`` clause while still
allowing callers to handle specific failure modes.

Storage failures are tagged with a :class:`StorageErrorKind` so recovery code
dispatches on type instead of matching error message strings.
"""

from __future__ import annotations

from enum import Enum


class CuratorSyncError(Exception):
    """Base exception for all curatorsync errors."""


class ConfigError(CuratorSyncError):
    """Configuration loading or validation failure."""


class EntityValidationError(CuratorSyncError):
    """Raised when an entity is missing required fields.

    Always raised before any storage transaction is opened.

    Attributes:
        errors: Individual validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        joined = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Entity validation failed:\n{joined}")


class EntityNotFoundError(CuratorSyncError):
    """Raised when a referenced local entity does not exist."""


class StorageErrorKind(str, Enum):
    SCHEMA = "schema"
    CORRUPTION = "corruption"
    TRANSACTION = "transaction"
    CONSTRAINT = "constraint"
    OTHER = "other"


class StorageError(CuratorSyncError):
    """Local storage failure tagged with its :class:`StorageErrorKind`."""

    kind: StorageErrorKind = StorageErrorKind.OTHER

    def __init__(self, message: str, *, kind: StorageErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class StorageSchemaError(StorageError):
    """Schema version mismatch, missing table, or an unreadable database file."""

    kind = StorageErrorKind.SCHEMA


class StorageTransactionError(StorageError):
    """A transaction could not be started or committed."""

    kind = StorageErrorKind.TRANSACTION


class StorageConstraintError(StorageError):
    """A write violated a uniqueness or foreign-key constraint."""

    kind = StorageErrorKind.CONSTRAINT


class NetworkError(CuratorSyncError):
    """Remote API call failed (transport failure or non-2xx response).

    Attributes:
        status_code: HTTP status code when a response was received.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteResponseError(NetworkError):
    """The remote API answered 2xx with an unusable payload."""


class SyncError(CuratorSyncError):
    """Engine-level synchronization failure."""


class SyncInProgressError(SyncError):
    """A sync was requested while another one is still running."""
