"""Unit tests for the debounced write coalescer."""

from __future__ import annotations

import asyncio

import pytest

from infracc.errors import PersistenceError, PersistenceTimeoutError, StoreUnavailableError
from infracc.store.backends import InMemoryBackingStore
from infracc.store.coalescer import FlushStats, WriteCoalescer


class FailingBackingStore(InMemoryBackingStore):
    """In-memory store that fails writes for selected keys."""

    def __init__(self, failing_keys=(), unavailable: bool = False, latency: float = 0.0):
        super().__init__(latency=latency)
        self.failing_keys = set(failing_keys)
        self.unavailable = unavailable

    async def set(self, key: str, value: str) -> None:
        if self.unavailable:
            raise StoreUnavailableError("connection refused")
        if key in self.failing_keys:
            raise PersistenceError(key, "write rejected")
        await super().set(key, value)


def _coalescer(backend, records, debounce=0.01, batch_size=2) -> WriteCoalescer:
    return WriteCoalescer(
        backend,
        snapshot=lambda: list(records),
        debounce_seconds=debounce,
        batch_size=batch_size,
    )


class TestDebounce:
    """Test coalescing of rapid mutations."""

    @pytest.mark.asyncio
    async def test_burst_of_writes_flushes_once(self, backend, record_factory):
        """Five puts inside the debounce window produce one flush."""
        records = []
        coalescer = _coalescer(backend, records)

        for i in range(5):
            records.append(record_factory(f"i-{i}"))
            coalescer.mark_written(f"i-{i}")

        await asyncio.sleep(0.2)

        assert coalescer.flush_count == 1
        assert coalescer.last_flush.batches == 3
        assert sorted(backend.data) == [f"i-{i}" for i in range(5)]
        assert not coalescer.dirty

    @pytest.mark.asyncio
    async def test_nothing_written_before_debounce(self, backend, record_factory):
        records = [record_factory("i-1")]
        coalescer = _coalescer(backend, records, debounce=10)

        coalescer.mark_written("i-1")
        await asyncio.sleep(0.01)

        assert backend.data == {}
        coalescer.cancel_timer()


class TestForceFlush:
    """Test explicit durability flushes."""

    @pytest.mark.asyncio
    async def test_force_flush_cancels_timer(self, backend, record_factory):
        records = [record_factory("i-1")]
        coalescer = _coalescer(backend, records)
        coalescer.mark_written("i-1")

        stats = await coalescer.force_flush()
        await asyncio.sleep(0.1)

        assert stats.written == 1
        assert coalescer.flush_count == 1
        assert backend.write_counts["i-1"] == 1

    @pytest.mark.asyncio
    async def test_force_flush_skipped_when_clean(self, backend, record_factory):
        coalescer = _coalescer(backend, [record_factory("i-1")])

        assert await coalescer.force_flush() is None
        assert backend.write_counts["i-1"] == 0

    @pytest.mark.asyncio
    async def test_force_flush_timeout(self, record_factory):
        backend = InMemoryBackingStore(latency=0.5)
        records = [record_factory("i-1")]
        coalescer = _coalescer(backend, records)
        coalescer.mark_written("i-1")

        with pytest.raises(PersistenceTimeoutError):
            await coalescer.force_flush(timeout=0.05)

        # Aborted flush keeps the work pending
        assert coalescer.dirty
        assert not coalescer.flushing

    @pytest.mark.asyncio
    async def test_applies_pending_deletes(self, backend, record_factory):
        await backend.set("gone", "{}")
        coalescer = _coalescer(backend, [])
        coalescer.mark_deleted("gone")

        stats = await coalescer.force_flush()

        assert stats.deleted == 1
        assert "gone" not in backend.data
        assert coalescer.pending_deletes == frozenset()

    @pytest.mark.asyncio
    async def test_rewrite_cancels_pending_delete(self, backend, record_factory):
        coalescer = _coalescer(backend, [record_factory("i-1")])

        coalescer.mark_deleted("i-1")
        coalescer.mark_written("i-1")
        await coalescer.force_flush()

        assert "i-1" in backend.data


class TestSingleFlight:
    """Test that flushes never overlap."""

    @pytest.mark.asyncio
    async def test_overlapping_flush_is_dropped(self, record_factory):
        backend = InMemoryBackingStore(latency=0.05)
        coalescer = _coalescer(backend, [record_factory("i-1")])
        coalescer.mark_dirty()

        first = asyncio.create_task(coalescer.flush())
        await asyncio.sleep(0)

        assert coalescer.flushing
        assert await coalescer.flush() is None

        stats = await first
        assert stats.written == 1
        assert coalescer.flush_count == 1

    @pytest.mark.asyncio
    async def test_late_writer_is_flushed_afterwards(self, record_factory):
        """A put landing mid-flush is persisted by a follow-up flush."""
        backend = InMemoryBackingStore(latency=0.02)
        records = [record_factory("i-1"), record_factory("i-2")]
        coalescer = _coalescer(backend, records)
        coalescer.mark_dirty()

        flush = asyncio.create_task(coalescer.force_flush())
        await asyncio.sleep(0.005)
        assert coalescer.flushing

        records.append(record_factory("i-3"))
        coalescer.mark_written("i-3")
        await flush

        await asyncio.sleep(0.3)

        assert "i-3" in backend.data
        assert not coalescer.dirty


class TestFailurePolicy:
    """Test per-key failure handling."""

    @pytest.mark.asyncio
    async def test_failed_key_is_skipped(self, record_factory):
        backend = FailingBackingStore(failing_keys={"i-2"})
        records = [record_factory(f"i-{i}") for i in range(4)]
        coalescer = _coalescer(backend, records)
        coalescer.mark_dirty()

        stats = await coalescer.force_flush()

        assert stats.written == 3
        assert stats.failed == 1
        assert not stats.success
        assert "i-3" in backend.data
        # Stays dirty so the next flush retries
        assert coalescer.dirty

    @pytest.mark.asyncio
    async def test_retry_succeeds_after_recovery(self, record_factory):
        backend = FailingBackingStore(failing_keys={"i-1"})
        coalescer = _coalescer(backend, [record_factory("i-1")])
        coalescer.mark_dirty()
        await coalescer.force_flush()

        backend.failing_keys.clear()
        stats = await coalescer.force_flush()

        assert stats.success
        assert "i-1" in backend.data

    @pytest.mark.asyncio
    async def test_unavailable_store_propagates(self, record_factory):
        backend = FailingBackingStore(unavailable=True)
        coalescer = _coalescer(backend, [record_factory("i-1")])
        coalescer.mark_dirty()

        with pytest.raises(StoreUnavailableError):
            await coalescer.force_flush()

        assert coalescer.dirty
        assert not coalescer.flushing


class TestClose:
    """Test shutdown."""

    @pytest.mark.asyncio
    async def test_close_persists_pending_writes(self, backend, record_factory):
        coalescer = _coalescer(backend, [record_factory("i-1")], debounce=10)
        coalescer.mark_written("i-1")

        await coalescer.close()

        assert "i-1" in backend.data
        assert not coalescer.dirty


def test_flush_stats_success():
    assert FlushStats(written=3).success
    assert not FlushStats(written=2, failed=1).success
