"""Recovery policy for local storage failures.

The policy is the single place that inspects raw ``sqlite3`` errors. It turns
them into tagged :class:`~curatorsync.contracts.exceptions.StorageError`
instances; everything downstream dispatches on the error kind.
"""

from __future__ import annotations

import sqlite3

from curatorsync.contracts.exceptions import (
    StorageConstraintError,
    StorageError,
    StorageErrorKind,
    StorageSchemaError,
    StorageTransactionError,
)

_CORRUPTION_CODES = frozenset({"SQLITE_CORRUPT", "SQLITE_NOTADB"})
_TRANSACTION_CODES = frozenset({"SQLITE_BUSY", "SQLITE_LOCKED"})

# SQLITE_ERROR is generic; these fragments narrow it down.
_SCHEMA_MARKERS = ("no such table", "no such column", "has no column named")
_CORRUPTION_MARKERS = ("malformed", "not a database")
_TRANSACTION_MARKERS = (
    "database is locked",
    "cannot commit",
    "cannot rollback",
    "cannot start a transaction",
    "no transaction is active",
    "closed database",
)


class RecoveryPolicy:
    """Decides how storage failures are classified and recovered.

    Subclass to change which kinds trigger a destructive reset, or to require
    confirmation before local data is discarded.
    """

    reset_on_open: frozenset[StorageErrorKind] = frozenset({StorageErrorKind.SCHEMA, StorageErrorKind.CORRUPTION})
    retryable: frozenset[StorageErrorKind] = frozenset(
        {StorageErrorKind.SCHEMA, StorageErrorKind.CORRUPTION, StorageErrorKind.TRANSACTION}
    )

    def classify(self, exc: BaseException) -> StorageError:
        if isinstance(exc, StorageError):
            return exc

        message = str(exc) or exc.__class__.__name__
        lowered = message.lower()
        code = getattr(exc, "sqlite_errorname", "") or ""

        if isinstance(exc, sqlite3.IntegrityError) or code.startswith("SQLITE_CONSTRAINT"):
            return StorageConstraintError(message)
        if code in _CORRUPTION_CODES or any(marker in lowered for marker in _CORRUPTION_MARKERS):
            return StorageSchemaError(message, kind=StorageErrorKind.CORRUPTION)
        if any(marker in lowered for marker in _SCHEMA_MARKERS):
            return StorageSchemaError(message)
        if code in _TRANSACTION_CODES or any(marker in lowered for marker in _TRANSACTION_MARKERS):
            return StorageTransactionError(message)
        return StorageError(message)

    def should_reset_on_open(self, error: StorageError) -> bool:
        return error.kind in self.reset_on_open

    def should_retry(self, error: StorageError) -> bool:
        return error.kind in self.retryable

    async def confirm_reset(self, reason: str) -> bool:
        """Return ``False`` to veto a destructive reset."""
        return True
