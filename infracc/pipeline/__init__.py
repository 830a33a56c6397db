"""Bulk ingestion pipeline for InfraCC.

Dedupes freshly parsed candidate rows into record store mutations,
merging cost deltas additively across files and runs.
"""

from infracc.pipeline.ingest import IngestionPipeline
from infracc.pipeline.types import CandidateSource, IngestProgress, IngestResult, IngestStatus

__all__ = [
    "IngestionPipeline",
    "CandidateSource",
    "IngestProgress",
    "IngestResult",
    "IngestStatus",
]
