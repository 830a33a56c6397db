"""Ingestion pipeline - dedupes candidate rows into record store mutations.

One run:
1. Index every existing record by dedupe key (one pass over the cache,
   never a backing-store lookup per candidate)
2. Walk candidates in input order, merging cost deltas into matches and
   creating records for new keys
3. Persist the staged records in batches, then force a flush

Per-candidate failures are logged and counted; they never abort the run.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any
from uuid import uuid4

import structlog

from infracc.canonical.key_generator import derived_record_id
from infracc.config import IngestConfig
from infracc.errors import (
    ConcurrencyGuardError,
    IngestionTimeoutError,
    PersistenceTimeoutError,
    StoreUnavailableError,
    ValidationError,
)
from infracc.models import Record
from infracc.pipeline.candidates import ParsedCandidate, build_record, parse_candidate
from infracc.pipeline.types import CandidateSource, IngestProgress, IngestResult, IngestStatus
from infracc.store.repository import RecordStore
from infracc.utils.performance import OperationTimer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IngestProgress], Any]  # may return an awaitable

# Share of the progress bar spent walking candidates; the rest is persisting
_PROCESS_SHARE = 90.0


class _RunState:
    """Mutable bookkeeping for one ingestion run."""

    def __init__(self, records: list[Record]):
        self.index: dict[str, Record] = {}
        self.ids_in_use: set[str] = set()
        for record in records:
            self.index[record.dedupe_key] = record
            self.ids_in_use.add(record.id)

        self.staged: dict[str, Record] = {}
        self.new_keys: set[str] = set()
        self.seen_keys: set[str] = set()


class IngestionPipeline:
    """Single-flight bulk ingestion into a RecordStore.

    Args:
        store: Opened record store
        config: Ingestion tuning; defaults to ``IngestConfig()``
    """

    def __init__(self, store: RecordStore, config: IngestConfig | None = None):
        self.store = store
        self.config = config or IngestConfig()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def ingest(
        self,
        candidates: Sequence[Mapping[str, Any]],
        on_progress: ProgressCallback | None = None,
        source_name: str = "input",
    ) -> IngestResult:
        """Ingest candidate rows from a single source."""
        return await self.ingest_sources([CandidateSource(source_name, candidates)], on_progress)

    async def ingest_sources(
        self,
        sources: Sequence[CandidateSource],
        on_progress: ProgressCallback | None = None,
    ) -> IngestResult:
        """Ingest several sources in sequence as one run.

        Raises:
            ConcurrencyGuardError: If a run is already in progress on this pipeline
            IngestionTimeoutError: If the run exceeds ``timeout_seconds``
            StoreUnavailableError: If the backing store cannot be reached
        """
        if self._running:
            raise ConcurrencyGuardError("Ingestion already in progress")

        self._running = True
        run_id = uuid4().hex[:8]
        try:
            with structlog.contextvars.bound_contextvars(ingest_run=run_id):
                return await asyncio.wait_for(
                    self._run(sources, on_progress, run_id),
                    timeout=self.config.timeout_seconds,
                )
        except PersistenceTimeoutError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(f"Ingestion aborted after {self.config.timeout_seconds}s; persisted work is kept")
            raise IngestionTimeoutError(
                f"Ingestion exceeded {self.config.timeout_seconds}s"
            ) from e
        finally:
            self._running = False

    async def _run(
        self,
        sources: Sequence[CandidateSource],
        on_progress: ProgressCallback | None,
        run_id: str,
    ) -> IngestResult:
        start = time.perf_counter()
        result = IngestResult(run_id=run_id, sources=[source.name for source in sources])
        result.total_candidates = sum(len(source.candidates) for source in sources)

        logger.info(
            f"Starting ingestion of {result.total_candidates} candidates from {len(sources)} source(s)"
        )

        with OperationTimer("ingestion index build", threshold_ms=2000) as timer:
            existing = await self.store.find_all()
            timer.items = len(existing)
            state = _RunState(existing)

        processed = 0
        for file_number, source in enumerate(sources, start=1):
            await self._report(
                on_progress,
                current=file_number,
                total=len(sources),
                current_item=source.name,
                percent=self._process_percent(processed, result.total_candidates),
                status=f"Processing {source.name}",
            )

            for position, row in enumerate(source.candidates, start=1):
                self._process_candidate(row, source.name, state, result)
                processed += 1

                if position % self.config.batch_size == 0:
                    await self._report(
                        on_progress,
                        current=position,
                        total=len(source.candidates),
                        current_item=source.name,
                        percent=self._process_percent(processed, result.total_candidates),
                        status=f"Deduplicating {source.name}",
                    )
                    # Let timers (debounce, wait_for) run on huge files
                    await asyncio.sleep(0)

        result.new_count = len(state.new_keys)
        result.updated_count = len(state.staged) - len(state.new_keys)
        result.unique_count = len(state.seen_keys)

        await self._persist(list(state.staged.values()), on_progress)

        result.duration_seconds = time.perf_counter() - start
        if result.total_candidates and result.imported_count == 0:
            result.status = IngestStatus.FAILED
        elif result.skipped_count:
            result.status = IngestStatus.PARTIAL_SUCCESS

        await self._report(
            on_progress,
            current=result.total_candidates,
            total=result.total_candidates,
            current_item="",
            percent=100.0,
            status="Complete",
        )

        logger.info(f"Ingestion finished in {result.duration_seconds:.2f}s: {result.summary()}")
        return result

    def _process_candidate(
        self,
        row: Mapping[str, Any],
        source_name: str,
        state: _RunState,
        result: IngestResult,
    ) -> None:
        try:
            candidate = parse_candidate(row, self.config)
            if candidate is None:
                self._skip(result, f"{source_name}: candidate without resource id")
                return

            existing = state.index.get(candidate.key)
            if existing is None:
                record = self._create(candidate, source_name, state)
                state.new_keys.add(candidate.key)
            else:
                record = self._merge(existing, candidate, source_name)
                if record is None:
                    state.seen_keys.add(candidate.key)
                    result.unchanged_count += 1
                    return

            state.index[candidate.key] = record
            state.staged[candidate.key] = record
            state.seen_keys.add(candidate.key)
        except Exception as e:
            logger.warning(f"Skipping candidate from {source_name}: {e}")
            logger.debug("Candidate failure details", exc_info=True)
            self._skip(result, f"{source_name}: {e}")

    def _create(self, candidate: ParsedCandidate, source_name: str, state: _RunState) -> Record:
        record_id = candidate.resource_id
        if record_id in state.ids_in_use:
            # Same resource id under another service/region
            record_id = derived_record_id(candidate.resource_id, candidate.key)

        record = build_record(candidate, record_id, source_name)
        state.ids_in_use.add(record.id)
        return record

    def _merge(self, existing: Record, candidate: ParsedCandidate, source_name: str) -> Record | None:
        """Merge a candidate into a matched record; None when nothing changed."""
        if candidate.currency != existing.monthly_cost.currency:
            raise ValidationError(
                f"Cannot merge {candidate.currency} cost into {existing.id} "
                f"({existing.monthly_cost.currency})"
            )

        cost_changed = abs(candidate.cost_delta) > self.config.cost_epsilon
        storage_grew = candidate.storage_gib > existing.storage_gib
        if not cost_changed and not storage_grew:
            return None

        changes: dict[str, Any] = {}
        if cost_changed:
            changes["monthly_cost"] = {
                "amount": existing.monthly_cost.amount + candidate.cost_delta,
                "currency": existing.monthly_cost.currency,
            }
        if storage_grew:
            changes["storage_gib"] = candidate.storage_gib
        if source_name not in existing.source_files:
            changes["source_files"] = (*existing.source_files, source_name)

        return existing.with_changes(**changes)

    async def _persist(self, staged: list[Record], on_progress: ProgressCallback | None) -> None:
        batch_size = self.config.batch_size
        total_batches = (len(staged) + batch_size - 1) // batch_size

        for batch_number, start in enumerate(range(0, len(staged), batch_size), start=1):
            batch = staged[start : start + batch_size]
            results = await asyncio.gather(
                *(self.store.save_one(record) for record in batch),
                return_exceptions=True,
            )
            for record, outcome in zip(batch, results):
                if isinstance(outcome, StoreUnavailableError):
                    raise outcome
                if isinstance(outcome, Exception):
                    logger.warning(f"Failed to stage record {record.id}: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome

            await self._report(
                on_progress,
                current=batch_number,
                total=total_batches,
                current_item=f"batch {batch_number}/{total_batches}",
                percent=_PROCESS_SHARE + (100.0 - _PROCESS_SHARE) * batch_number / total_batches,
                status="Saving records",
            )

            # Yield to the event loop between batches
            await asyncio.sleep(0)

        with OperationTimer("persist staged records", threshold_ms=5000, items=len(staged)):
            await self.store.force_persist()

    def _skip(self, result: IngestResult, message: str) -> None:
        result.skipped_count += 1
        if len(result.errors) < self.config.max_error_messages:
            result.errors.append(message)

    @staticmethod
    def _process_percent(processed: int, total: int) -> float:
        if total == 0:
            return _PROCESS_SHARE
        return _PROCESS_SHARE * processed / total

    @staticmethod
    async def _report(on_progress: ProgressCallback | None, **fields: Any) -> None:
        if on_progress is None:
            return
        outcome = on_progress(IngestProgress(**fields))
        if inspect.isawaitable(outcome):
            await outcome
