"""Caller-facing record store.

``RecordStore`` is an explicit handle over one backing store: create it (or
use ``open_store``), ``open()`` it, and ``close()`` it when done so pending
writes are flushed. There is no process-wide default store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from infracc.canonical.key_generator import dedupe_key
from infracc.config import AppConfig, StoreConfig
from infracc.errors import StoreUnavailableError, ValidationError
from infracc.models import Record, SourceSystem
from infracc.store.backends import BackingStore, InMemoryBackingStore, RedisBackingStore
from infracc.store.cache import RecordCache
from infracc.store.coalescer import FlushStats

logger = logging.getLogger(__name__)


@dataclass
class StoreStats:
    """Point-in-time view of the store's state."""

    records: int
    loaded: bool
    dirty: bool
    flushing: bool
    flush_count: int
    pending_deletes: int


class RecordStore:
    """Record persistence with an in-memory cache and coalesced write-back.

    Args:
        backend: Backing key-value store
        config: Store tuning; defaults to ``StoreConfig()``
    """

    def __init__(self, backend: BackingStore, config: StoreConfig | None = None):
        self.config = config or StoreConfig()
        self.backend = backend
        self.cache = RecordCache(backend, self.config)

    async def open(self) -> RecordStore:
        """Load persisted records into the cache."""
        await self.cache.ensure_loaded()
        return self

    async def close(self) -> None:
        """Flush pending writes and stop the debounce timer."""
        await self.cache.close(timeout=self.config.flush_timeout_seconds)

    async def __aenter__(self) -> RecordStore:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Writes

    async def save_one(self, record: Record) -> Record:
        """Upsert one record; persisted by the next coalesced flush.

        Raises:
            ValidationError: If the record is malformed
        """
        await self.cache.ensure_loaded()
        return self.cache.put(record)

    async def save_many_immediate(self, records: Sequence[Record]) -> list[int]:
        """Upsert records and write them to the backing store right away.

        Bypasses the debounce. Records go out in batches of
        ``flush_batch_size``; writes within a batch run concurrently.

        Returns:
            Number of records successfully written, per batch
        """
        await self.cache.ensure_loaded()

        batch_size = self.config.flush_batch_size
        counts: list[int] = []
        any_failed = False

        for start in range(0, len(records), batch_size):
            batch: list[Record] = []
            for record in records[start : start + batch_size]:
                try:
                    batch.append(self.cache.put(record, schedule=False))
                except ValidationError as e:
                    logger.warning(f"Rejected record in immediate save: {e}")
                    any_failed = True

            results = await asyncio.gather(
                *(self.backend.set(record.id, record.to_json()) for record in batch),
                return_exceptions=True,
            )

            written = 0
            for record, result in zip(batch, results):
                if isinstance(result, StoreUnavailableError):
                    self.cache.coalescer.mark_dirty()
                    raise result
                if isinstance(result, Exception):
                    logger.warning(f"Failed to persist record {record.id}: {result}")
                    any_failed = True
                elif isinstance(result, BaseException):
                    raise result
                else:
                    written += 1
            counts.append(written)

            # Yield to the event loop between batches
            if start + batch_size < len(records):
                await asyncio.sleep(0)

        if any_failed:
            # The cache holds records the backing store lacks
            self.cache.coalescer.mark_dirty()

        logger.debug(f"Immediate save wrote {sum(counts)}/{len(records)} records in {len(counts)} batches")
        return counts

    async def delete(self, record_id: str) -> bool:
        await self.cache.ensure_loaded()
        return self.cache.delete(record_id)

    async def clear(self) -> None:
        """Wipe the cache and the backing store."""
        await self.cache.clear()

    async def force_persist(self) -> FlushStats | None:
        """Flush now with durability intent.

        Raises:
            PersistenceTimeoutError: If the flush exceeds ``flush_timeout_seconds``
        """
        return await self.cache.flush(timeout=self.config.flush_timeout_seconds)

    # Reads

    async def find_by_id(self, record_id: str) -> Record | None:
        await self.cache.ensure_loaded()
        return self.cache.get(record_id)

    async def find_all(self) -> list[Record]:
        return await self.cache.get_all()

    async def find_by_dedupe_key(self, resource_id: str, service: str, region: str) -> Record | None:
        key = dedupe_key(resource_id, service, region)
        if not key:
            return None
        await self.cache.ensure_loaded()
        return self.cache.get_by_dedupe_key(key)

    async def find_by_source_system(self, system: SourceSystem | str) -> list[Record]:
        if not isinstance(system, SourceSystem):
            try:
                system = SourceSystem(str(system).strip().lower())
            except ValueError as e:
                raise ValidationError(f"Unknown source system: {system!r}") from e

        return [record for record in await self.cache.get_all() if record.source_system is system]

    def stats(self) -> StoreStats:
        coalescer = self.cache.coalescer
        return StoreStats(
            records=len(self.cache),
            loaded=self.cache.loader.loaded,
            dirty=coalescer.dirty,
            flushing=coalescer.flushing,
            flush_count=coalescer.flush_count,
            pending_deletes=len(coalescer.pending_deletes),
        )


def create_backend(config: AppConfig, in_memory: bool = False) -> BackingStore:
    """Build the configured backing store."""
    if in_memory:
        return InMemoryBackingStore()
    return RedisBackingStore.from_url(config.redis.url, namespace=config.redis.namespace)


@asynccontextmanager
async def open_store(
    config: AppConfig,
    backend: BackingStore | None = None,
    in_memory: bool = False,
) -> AsyncGenerator[RecordStore, None]:
    """Open a record store for the duration of a block.

    Usage:
        async with open_store(config) as store:
            await store.save_one(record)

    The backing store is closed on exit only when this function created it.
    """
    owns_backend = backend is None
    if backend is None:
        backend = create_backend(config, in_memory=in_memory)

    store = RecordStore(backend, config.store)
    opened = False
    try:
        await store.open()
        opened = True
        yield store
    finally:
        try:
            # Flush whatever was staged, even when the block raised
            if opened:
                await store.close()
        finally:
            if owns_backend:
                await backend.close()
