"""File intake for InfraCC.

Reads CSV, XLSX and ZIP-of-CSV exports into candidate rows for the
ingestion pipeline.
"""

from infracc.ingestion.files import read_candidates, read_sources

__all__ = ["read_candidates", "read_sources"]
