"""One-shot bulk load of the backing store into an empty record cache.

Large keyspaces are fetched in fixed-size chunks; each chunk's keys are
fetched concurrently and the loader yields to the event loop between chunks
so a multi-second load never starves other tasks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from infracc.errors import BackingStoreCorruptError, StoreUnavailableError
from infracc.models import Record
from infracc.store.backends import BackingStore
from infracc.utils.performance import log_slow_operation

logger = logging.getLogger(__name__)


@dataclass
class LoadStats:
    """Outcome of a bulk load."""

    keys_found: int = 0
    loaded: int = 0
    skipped: int = 0
    chunks: int = 0
    cleared_corrupt_store: bool = False
    duration_seconds: float = 0.0


class BulkLoader:
    """Populates the record cache from the backing store exactly once.

    Args:
        backend: Backing store to read from
        insert: Callback adding a loaded record to the cache
        is_empty: Callback reporting whether the cache holds entries
        chunk_size: Keys fetched concurrently per chunk
        chunk_threshold: Key count above which loading is chunked
        clear_on_corrupt: Wipe a backing store that reports corruption
    """

    def __init__(
        self,
        backend: BackingStore,
        insert: Callable[[Record], None],
        is_empty: Callable[[], bool],
        chunk_size: int = 1000,
        chunk_threshold: int = 1000,
        clear_on_corrupt: bool = True,
    ):
        self.backend = backend
        self._insert = insert
        self._is_empty = is_empty
        self.chunk_size = chunk_size
        self.chunk_threshold = chunk_threshold
        self.clear_on_corrupt = clear_on_corrupt

        self._loaded = False
        # Set while a load has inserted records but not finished
        self._incomplete = False
        self._load_task: asyncio.Task | None = None
        self.last_load: LoadStats | None = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def loading(self) -> bool:
        return self._load_task is not None and not self._load_task.done()

    def reset(self) -> None:
        """Allow the next ``ensure_loaded`` to load again."""
        self._loaded = False

    def mark_loaded(self) -> None:
        self._loaded = True
        self._incomplete = False

    async def wait(self) -> None:
        """Wait for an in-flight load to settle, whatever its outcome."""
        task = self._load_task
        if task is None or task.done():
            return
        try:
            await asyncio.shield(task)
        except (StoreUnavailableError, BackingStoreCorruptError) as e:
            logger.debug(f"In-flight load failed while waiting: {e}")

    async def ensure_loaded(self) -> LoadStats | None:
        """Load the backing store unless already loaded or loading.

        Concurrent callers share the in-flight load instead of starting a
        second one.

        Returns:
            LoadStats for the load this call started or joined, None when
            no load was needed

        Raises:
            StoreUnavailableError: If the backing store cannot be reached
        """
        if self._load_task is not None and not self._load_task.done():
            return await asyncio.shield(self._load_task)

        if self._loaded:
            return None

        if not self._incomplete and not self._is_empty():
            # Entries were put before anyone read; nothing to merge into
            self._loaded = True
            return None

        self._load_task = asyncio.get_running_loop().create_task(self._load())
        try:
            return await asyncio.shield(self._load_task)
        finally:
            if self._load_task is not None and self._load_task.done():
                self._load_task = None

    @log_slow_operation(threshold_ms=5000)
    async def _load(self) -> LoadStats:
        start = time.perf_counter()
        stats = LoadStats()

        try:
            keys = await self.backend.keys()
        except BackingStoreCorruptError as e:
            await self._handle_corrupt_store(e, stats)
            self._loaded = True
            stats.duration_seconds = time.perf_counter() - start
            self.last_load = stats
            return stats

        stats.keys_found = len(keys)
        self._incomplete = True

        if len(keys) > self.chunk_threshold:
            logger.info(f"Loading {len(keys)} records in chunks of {self.chunk_size}")
            for chunk_start in range(0, len(keys), self.chunk_size):
                chunk = keys[chunk_start : chunk_start + self.chunk_size]
                await self._load_chunk(chunk, stats)
                stats.chunks += 1

                # Yield to the event loop between chunks
                if chunk_start + self.chunk_size < len(keys):
                    await asyncio.sleep(0)
        elif keys:
            await self._load_chunk(keys, stats)
            stats.chunks = 1

        self._loaded = True
        self._incomplete = False
        stats.duration_seconds = time.perf_counter() - start
        self.last_load = stats

        logger.info(
            f"Loaded {stats.loaded}/{stats.keys_found} records from backing store "
            f"({stats.skipped} skipped, {stats.duration_seconds:.2f}s)"
        )
        return stats

    async def _load_chunk(self, keys: list[str], stats: LoadStats) -> None:
        results = await asyncio.gather(*(self._fetch(key) for key in keys), return_exceptions=True)

        for key, result in zip(keys, results):
            if isinstance(result, StoreUnavailableError):
                raise result
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Skipping unreadable record {key}: {result}")
                stats.skipped += 1
            elif result is None:
                # Deleted between keys() and get()
                logger.debug(f"Record {key} vanished during load")
                stats.skipped += 1
            else:
                self._insert(result)
                stats.loaded += 1

    async def _fetch(self, key: str) -> Record | None:
        raw = await self.backend.get(key)
        if raw is None:
            return None
        return Record.from_json(raw)

    async def _handle_corrupt_store(self, error: Exception, stats: LoadStats) -> None:
        if not self.clear_on_corrupt:
            logger.error(f"Backing store is unreadable and clear_on_corrupt is off: {error}")
            raise error

        # Lossy recovery: availability over possibly corrupt data
        logger.error(
            f"Backing store is unreadable ({error}); CLEARING ALL STORED RECORDS. "
            "Operators: previously persisted records are lost and must be re-ingested."
        )
        await self.backend.clear()
        stats.cleared_corrupt_store = True
