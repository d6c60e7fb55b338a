"""Helpers shared by the repositories."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from curatorsync.contracts.exceptions import StorageError
from curatorsync.store.local_store import LocalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_recovery(store: LocalStore, operation: Callable[[], Awaitable[T]], *, what: str) -> T:
    """Run *operation*; on a retryable storage failure reset the store and run it once more.

    The second failure, and any non-retryable one, propagates unchanged.
    """
    try:
        return await operation()
    except StorageError as exc:
        if not store.recovery.should_retry(exc):
            raise
        logger.warning("%s failed (%s): %s; resetting local store and retrying once", what, exc.kind.value, exc)
        await store.reset(f"{what} failed: {exc}", error=exc)
    return await operation()


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))
