"""Debounced, batched write-back from the record cache to the backing store.

Every cache mutation marks the coalescer dirty and (re)arms a short debounce
timer. When the timer fires, one flush writes a snapshot of the *whole*
cache in sequential batches; writes inside a batch run concurrently.

Invariants:
- At most one flush is in flight. ``flush()`` called while another flush
  runs returns None instead of queueing.
- A flush always writes the cache as it is when the flush starts. Mutations
  that land while it runs bump the generation counter and re-arm the timer
  once the flush completes, so late writers are never dropped.
- A key that fails to write is logged and skipped; the coalescer stays dirty
  and the next flush re-attempts every record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from infracc.errors import PersistenceError, PersistenceTimeoutError, StoreUnavailableError
from infracc.models import Record
from infracc.store.backends import BackingStore
from infracc.utils.performance import log_slow_operation

logger = logging.getLogger(__name__)


@dataclass
class FlushStats:
    """Outcome of one flush round."""

    written: int = 0
    failed: int = 0
    deleted: int = 0
    batches: int = 0
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed == 0


class WriteCoalescer:
    """Coalesces cache mutations into few large backing-store rounds.

    Args:
        backend: Backing store to write to
        snapshot: Returns every record currently in the cache
        debounce_seconds: Quiet period after the last mutation before flushing
        batch_size: Records written concurrently per batch
    """

    def __init__(
        self,
        backend: BackingStore,
        snapshot: Callable[[], Sequence[Record]],
        debounce_seconds: float = 0.2,
        batch_size: int = 2000,
    ):
        self.backend = backend
        self._snapshot = snapshot
        self.debounce_seconds = debounce_seconds
        self.batch_size = batch_size

        self._timer: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._flushing = False
        self._idle = asyncio.Event()
        self._idle.set()

        self._dirty = False
        self._generation = 0
        self._pending_deletes: set[str] = set()

        self.flush_count = 0
        self.last_flush: FlushStats | None = None

    # Mutation tracking

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def flushing(self) -> bool:
        return self._flushing

    @property
    def pending_deletes(self) -> frozenset[str]:
        return frozenset(self._pending_deletes)

    def mark_written(self, record_id: str) -> None:
        """Record an upsert and arm the debounce timer."""
        self._pending_deletes.discard(record_id)
        self._touch()

    def discard_delete(self, record_id: str) -> None:
        """Drop a pending delete for a record that was written directly."""
        self._pending_deletes.discard(record_id)

    def mark_deleted(self, record_id: str) -> None:
        """Record a delete and arm the debounce timer."""
        self._pending_deletes.add(record_id)
        self._touch()

    def mark_dirty(self) -> None:
        """Flag that the backing store may lag the cache, without a timer."""
        self._dirty = True
        self._generation += 1

    def reset(self) -> None:
        """Forget pending work (the cache and backing store were just cleared)."""
        self.cancel_timer()
        self._pending_deletes.clear()
        self._dirty = False
        self._generation += 1

    def _touch(self) -> None:
        self.mark_dirty()
        self.schedule()

    # Debounce timer

    def schedule(self) -> None:
        """(Re)start the debounce timer.

        Outside a running event loop nothing is scheduled; the dirty flag
        stays set and the next ``force_flush`` persists the changes.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        self.cancel_timer()
        self._timer = loop.create_task(self._debounced_flush())

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _debounced_flush(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return

        # Detach from the timer slot first: a mutation arriving mid-flush
        # must arm a new timer, not cancel this flush
        task = asyncio.current_task()
        if self._timer is task:
            self._timer = None
        if task is not None:
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        if not self._dirty and not self._pending_deletes:
            return

        try:
            await self.flush()
        except Exception as e:
            # Nothing awaits this task; the cache still holds the data
            logger.error(f"Debounced flush failed: {e}", exc_info=True)

    # Flushing

    @log_slow_operation(threshold_ms=5000)
    async def flush(self) -> FlushStats | None:
        """Write pending deletes and a full cache snapshot to the backing store.

        Returns:
            FlushStats, or None when another flush is already running
        """
        if self._flushing:
            logger.debug("Flush already in progress, dropping overlapping request")
            return None

        self._flushing = True
        self._idle.clear()
        start = time.perf_counter()
        stats = FlushStats()

        generation = self._generation
        self._dirty = False
        deletes = list(self._pending_deletes)
        self._pending_deletes.clear()

        try:
            await self._apply_deletes(deletes, stats)

            records = list(self._snapshot())
            for start_idx in range(0, len(records), self.batch_size):
                batch = records[start_idx : start_idx + self.batch_size]
                await self._write_batch(batch, stats)
                stats.batches += 1

                # Yield to the event loop between batches
                if start_idx + self.batch_size < len(records):
                    await asyncio.sleep(0)
        except BaseException:
            # Aborted (timeout, unreachable store): keep the work pending
            self._dirty = True
            self._pending_deletes.update(deletes)
            raise
        finally:
            stats.duration_seconds = time.perf_counter() - start
            self._flushing = False
            self._idle.set()

        self.flush_count += 1
        self.last_flush = stats

        if stats.failed:
            self._dirty = True
            logger.warning(
                f"Flush finished with {stats.failed} failed writes "
                f"({stats.written} written); records stay dirty for the next flush"
            )
        else:
            logger.debug(
                f"Flush #{self.flush_count}: {stats.written} written, {stats.deleted} deleted "
                f"in {stats.batches} batches ({stats.duration_seconds:.3f}s)"
            )

        if self._generation != generation:
            # Mutations arrived during the flush
            self.schedule()

        return stats

    async def _apply_deletes(self, keys: list[str], stats: FlushStats) -> None:
        if not keys:
            return

        results = await asyncio.gather(
            *(self.backend.delete(key) for key in keys), return_exceptions=True
        )
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                self._raise_if_fatal(result)
                logger.warning(f"Failed to delete {key} from backing store: {result}")
                self._pending_deletes.add(key)
                stats.failed += 1
            else:
                stats.deleted += 1

    async def _write_batch(self, batch: list[Record], stats: FlushStats) -> None:
        results = await asyncio.gather(
            *(self._write_one(record) for record in batch), return_exceptions=True
        )
        for record, result in zip(batch, results):
            if isinstance(result, BaseException):
                self._raise_if_fatal(result)
                error = result if isinstance(result, PersistenceError) else PersistenceError(record.id, str(result))
                logger.warning(f"Failed to persist record {error}")
                stats.failed += 1
            else:
                stats.written += 1

    async def _write_one(self, record: Record) -> None:
        await self.backend.set(record.id, record.to_json())

    @staticmethod
    def _raise_if_fatal(error: BaseException) -> None:
        # Cancellation and an unreachable store are not per-key failures
        if not isinstance(error, Exception) or isinstance(error, StoreUnavailableError):
            raise error

    async def force_flush(self, timeout: float | None = None) -> FlushStats | None:
        """Flush now, bypassing the debounce.

        Cancels the pending timer, waits for an in-flight flush and then
        flushes the current cache state. Skipped when nothing is dirty.

        Raises:
            PersistenceTimeoutError: If the flush exceeds ``timeout`` seconds
        """
        self.cancel_timer()

        async def _run() -> FlushStats | None:
            while self._flushing:
                await self._idle.wait()
            if not self._dirty and not self._pending_deletes:
                return None
            return await self.flush()

        if timeout is None:
            return await _run()

        try:
            return await asyncio.wait_for(_run(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceTimeoutError(f"Flush did not complete within {timeout}s") from e

    async def wait_idle(self) -> None:
        """Wait until no flush is running."""
        while self._flushing:
            await self._idle.wait()

    async def close(self, timeout: float | None = None) -> None:
        """Cancel timers and persist everything still dirty."""
        await self.force_flush(timeout=timeout)
        self.cancel_timer()
        for task in list(self._background):
            await asyncio.gather(task, return_exceptions=True)
