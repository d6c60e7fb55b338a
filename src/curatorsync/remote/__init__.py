"""Remote API exports."""

from curatorsync.remote.client import RemoteApiClient, idempotency_key
from curatorsync.remote.transport import RetryingTransport

__all__ = ["RemoteApiClient", "RetryingTransport", "idempotency_key"]
