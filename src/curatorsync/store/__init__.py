"""Local storage exports."""

from curatorsync.store.local_store import LocalStore
from curatorsync.store.recovery import RecoveryPolicy
from curatorsync.store.schema import SCHEMA_VERSION

__all__ = ["LocalStore", "RecoveryPolicy", "SCHEMA_VERSION"]
