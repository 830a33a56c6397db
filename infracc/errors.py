"""Exception taxonomy for the record store.

Per-item failures (``PersistenceError``, ``ValidationError`` raised while
ingesting a single candidate) are logged and skipped by batch loops.
Operation-level failures (timeouts, guard violations, an unreachable
backing store) propagate to the caller.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for all record store errors."""


class ValidationError(StoreError, ValueError):
    """A record or candidate has malformed fields."""


class PersistenceError(StoreError):
    """A single backing-store key failed to write or read."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class ConcurrencyGuardError(StoreError):
    """An exclusive single-flight operation is already running."""


class IngestionTimeoutError(StoreError, TimeoutError):
    """Ingestion exceeded its wall-clock budget."""


class PersistenceTimeoutError(StoreError, TimeoutError):
    """A forced flush exceeded its wall-clock budget."""


class StoreUnavailableError(StoreError):
    """The backing store could not be reached at all."""


class BackingStoreCorruptError(StoreError):
    """The backing store returned data it cannot interpret as a keyspace."""
