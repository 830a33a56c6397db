"""In-memory record cache: the authoritative view of all records.

All reads are served from memory. Every ``put``/``delete`` marks the write
coalescer dirty; the backing store catches up within one debounce interval
(or one in-flight flush).
"""

from __future__ import annotations

import logging

from infracc.config import StoreConfig
from infracc.errors import ValidationError
from infracc.models import Record
from infracc.store.backends import BackingStore
from infracc.store.coalescer import FlushStats, WriteCoalescer
from infracc.store.loader import BulkLoader, LoadStats

logger = logging.getLogger(__name__)


class RecordCache:
    """Record id -> Record map with a dedupe-key index.

    Owns the write coalescer and the bulk loader for its backing store.
    """

    def __init__(self, backend: BackingStore, config: StoreConfig | None = None):
        self.config = config or StoreConfig()
        self.backend = backend

        self._entries: dict[str, Record] = {}
        self._by_dedupe_key: dict[str, str] = {}

        self.coalescer = WriteCoalescer(
            backend,
            snapshot=self.snapshot,
            debounce_seconds=self.config.debounce_seconds,
            batch_size=self.config.flush_batch_size,
        )
        self.loader = BulkLoader(
            backend,
            insert=self._insert_loaded,
            is_empty=lambda: not self._entries,
            chunk_size=self.config.load_chunk_size,
            chunk_threshold=self.config.load_chunk_threshold,
            clear_on_corrupt=self.config.clear_on_corrupt_load,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._entries

    # Reads

    def get(self, record_id: str) -> Record | None:
        return self._entries.get(record_id)

    def get_by_dedupe_key(self, key: str) -> Record | None:
        record_id = self._by_dedupe_key.get(key)
        return self._entries.get(record_id) if record_id is not None else None

    async def get_all(self) -> list[Record]:
        """All records, loading from the backing store on first access."""
        await self.ensure_loaded()
        return list(self._entries.values())

    def snapshot(self) -> list[Record]:
        """All cached records without triggering a load."""
        return list(self._entries.values())

    async def ensure_loaded(self) -> LoadStats | None:
        return await self.loader.ensure_loaded()

    # Writes

    def put(self, record: Record, schedule: bool = True) -> Record:
        """Insert or replace a record.

        Args:
            record: Record to store
            schedule: Arm the coalescer's debounce timer (False when the
                caller writes the backing store itself)

        Raises:
            ValidationError: If ``record`` is not a Record with a non-empty id
        """
        if not isinstance(record, Record):
            raise ValidationError(f"Record instance required, got {type(record).__name__}")
        if not record.id or not record.id.strip():
            raise ValidationError("Record id must be non-empty")

        self._store(record)

        if schedule:
            self.coalescer.mark_written(record.id)
        else:
            self.coalescer.discard_delete(record.id)
        return record

    def delete(self, record_id: str) -> bool:
        """Remove a record; returns False if it was not cached."""
        record = self._entries.pop(record_id, None)
        if record is None:
            return False

        key = record.dedupe_key
        if self._by_dedupe_key.get(key) == record_id:
            del self._by_dedupe_key[key]

        self.coalescer.mark_deleted(record_id)
        return True

    async def clear(self) -> None:
        """Empty the cache and the backing store."""
        # A load finishing after the wipe would resurrect cleared records
        await self.loader.wait()

        self.coalescer.cancel_timer()
        await self.coalescer.wait_idle()

        count = len(self._entries)
        self._entries.clear()
        self._by_dedupe_key.clear()
        self.coalescer.reset()

        await self.backend.clear()

        # Nothing left to load; an empty backing store is already in sync
        self.loader.mark_loaded()
        logger.info(f"Cleared {count} cached records and the backing store")

    # Persistence

    async def flush(self, timeout: float | None = None) -> FlushStats | None:
        return await self.coalescer.force_flush(timeout=timeout)

    async def close(self, timeout: float | None = None) -> None:
        await self.coalescer.close(timeout=timeout)

    # Internals

    def _store(self, record: Record) -> None:
        previous = self._entries.get(record.id)
        if previous is not None:
            old_key = previous.dedupe_key
            if old_key != record.dedupe_key and self._by_dedupe_key.get(old_key) == record.id:
                del self._by_dedupe_key[old_key]

        self._entries[record.id] = record
        self._by_dedupe_key[record.dedupe_key] = record.id

    def _insert_loaded(self, record: Record) -> None:
        # Entries put while the load was running are newer than stored ones
        if record.id in self._entries:
            return
        self._store(record)

