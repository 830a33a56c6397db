"""Type definitions for ingestion runs."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class IngestStatus(str, Enum):
    """Status of an ingestion run."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"


@dataclass
class CandidateSource:
    """Freshly parsed candidate rows from one source file."""

    name: str
    candidates: Sequence[Mapping[str, Any]]


@dataclass
class IngestProgress:
    """Progress snapshot passed to ingestion callbacks.

    ``current``/``total`` count files at file granularity and candidates or
    staged records at batch granularity; ``percent`` is overall progress.
    """

    current: int
    total: int
    current_item: str
    percent: float
    status: str


@dataclass
class IngestResult:
    """Aggregate counters for an ingestion run."""

    run_id: str = ""
    status: IngestStatus = IngestStatus.SUCCESS
    new_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    unique_count: int = 0
    skipped_count: int = 0
    total_candidates: int = 0
    sources: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Check if ingestion was successful."""
        return self.status in (IngestStatus.SUCCESS, IngestStatus.PARTIAL_SUCCESS)

    @property
    def imported_count(self) -> int:
        """Candidates that were merged or stored (everything not skipped)."""
        return self.total_candidates - self.skipped_count

    def summary(self) -> str:
        """Human-readable aggregate, e.g. for a CLI or toast message."""
        return (
            f"{self.imported_count:,} of {self.total_candidates:,} records imported "
            f"({self.new_count:,} new, {self.updated_count:,} updated, "
            f"{self.unchanged_count:,} unchanged, {self.skipped_count:,} skipped; "
            f"{self.unique_count:,} unique)"
        )
