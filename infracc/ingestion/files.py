"""Billing and inventory file reading.

Turns CSV/XLSX exports (or a ZIP of CSV exports) into plain candidate
mappings. Column names are passed through untouched; the pipeline's alias
lookup decides what each column means.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Any

import pandas as pd

from infracc.pipeline.types import CandidateSource

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".xlsx", ".xls", ".zip")


def _frame_to_rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    # NaN cells become None so missing values look the same for every format
    df = df.astype(object).where(df.notna(), None)
    return df.to_dict(orient="records")


def _read_zip(file_path: Path) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    with zipfile.ZipFile(file_path) as archive:
        members = [
            name
            for name in archive.namelist()
            if name.lower().endswith(".csv") and not name.startswith("__MACOSX/")
        ]
        if not members:
            raise ValueError(f"No CSV files found in {file_path.name}")

        for name in sorted(members):
            with archive.open(name) as handle:
                member_rows = _frame_to_rows(pd.read_csv(handle))
            logger.debug(f"Read {len(member_rows)} rows from {file_path.name}:{name}")
            rows.extend(member_rows)
    return rows


def read_candidates(file_path: Path | str) -> list[dict[str, Any]]:
    """Read candidate rows from a CSV, XLSX or ZIP file.

    Args:
        file_path: Path to the export

    Returns:
        One mapping per row, NaN cells replaced by None

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the format is unsupported or the ZIP holds no CSV
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Input file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == ".csv":
        rows = _frame_to_rows(pd.read_csv(file_path))
    elif suffix in (".xlsx", ".xls"):
        rows = _frame_to_rows(pd.read_excel(file_path))
    elif suffix == ".zip":
        rows = _read_zip(file_path)
    else:
        raise ValueError(f"Unsupported file format: {file_path.name}")

    logger.info(f"Read {len(rows)} candidate rows from {file_path.name}")
    return rows


def read_sources(paths: list[Path]) -> list[CandidateSource]:
    """One CandidateSource per input file, named after the file."""
    return [CandidateSource(Path(path).name, read_candidates(path)) for path in paths]
