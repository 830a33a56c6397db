"""Candidate row parsing for ingestion.

Parsers hand over plain mappings (one per billing/inventory row). Column
names vary by parser, so each Record field is looked up under a list of
aliases. NaN cells (pandas) and blank strings count as missing.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from infracc.canonical.key_generator import dedupe_key
from infracc.config import IngestConfig
from infracc.errors import ValidationError
from infracc.models import Record, ResourceKind, SourceSystem

ID_COLUMNS = ["id", "resource_id", "resourceId", "ResourceId", "lineItem/ResourceId"]
NAME_COLUMNS = ["name", "Name", "resourceName"]
SERVICE_COLUMNS = ["service", "service_label", "serviceLabel", "Service", "product/ProductName"]
REGION_COLUMNS = ["region", "Region", "product/region"]
KIND_COLUMNS = ["type", "resource_kind", "resourceKind", "Type"]
SOURCE_COLUMNS = ["sourceProvider", "source_system", "sourceSystem", "provider"]
CPU_COLUMNS = ["cpu", "cpu_cores", "cpuCores", "vcpu"]
MEMORY_COLUMNS = ["memory", "memory_gib", "memoryGiB", "memoryGb"]
STORAGE_COLUMNS = ["storage", "storage_gib", "storageGiB", "storageGb", "size"]
COST_COLUMNS = ["monthlyCost", "monthly_cost", "cost", "lineItem/UnblendedCost"]
CURRENCY_COLUMNS = ["currency", "Currency", "lineItem/CurrencyCode"]
OS_COLUMNS = ["os", "operating_system", "operatingSystem"]
TRAFFIC_COLUMNS = ["monthlyTraffic", "monthly_traffic_gib", "monthlyTrafficGiB"]
DEPENDENCY_COLUMNS = ["dependencies", "dependency_ids", "dependencyIds"]


@dataclass
class ParsedCandidate:
    """A candidate row reduced to the values ingestion needs."""

    key: str
    resource_id: str
    service_label: str
    region: str
    cost_delta: float
    currency: str
    storage_gib: float
    fields: dict[str, Any] = field(default_factory=dict)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return False
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _get_value(row: Mapping[str, Any], col_name: str | list[str]) -> Any:
    """Get the first present value among ``col_name`` aliases."""
    if isinstance(col_name, str):
        col_name = [col_name]

    for col in col_name:
        if col in row and not _is_missing(row[col]):
            return row[col]

    return None


def _get_str(row: Mapping[str, Any], col_name: str | list[str]) -> str | None:
    value = _get_value(row, col_name)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        # pandas reads numeric ids as floats
        value = int(value)
    return str(value).strip()


def _get_float(row: Mapping[str, Any], col_name: str | list[str], default: float = 0.0) -> float:
    value = _get_value(row, col_name)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValidationError(f"Expected a number for {col_name}, got {value!r}")
    try:
        if isinstance(value, str):
            value = value.replace(",", "").replace("$", "").strip()
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Expected a number for {col_name}, got {value!r}") from e
    if number != number or number in (float("inf"), float("-inf")):
        raise ValidationError(f"Expected a finite number for {col_name}, got {value!r}")
    return number


def _non_negative(value: float) -> float:
    # Capacity columns occasionally carry negative adjustments; clamp them
    return max(0.0, value)


def _get_dependencies(row: Mapping[str, Any]) -> list[str]:
    value = _get_value(row, DEPENDENCY_COLUMNS)
    if value is None:
        return []
    if isinstance(value, str):
        return [dep.strip() for dep in value.split(",") if dep.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(dep).strip() for dep in value if str(dep).strip()]
    raise ValidationError(f"dependencies must be a list or comma-separated string, got {value!r}")


def _get_kind(row: Mapping[str, Any]) -> ResourceKind:
    value = _get_str(row, KIND_COLUMNS)
    if value is None:
        return ResourceKind.VM
    try:
        return ResourceKind(value.lower())
    except ValueError as e:
        raise ValidationError(f"Invalid resource kind: {value!r}") from e


def _get_source(row: Mapping[str, Any]) -> SourceSystem:
    value = _get_str(row, SOURCE_COLUMNS)
    if value is None:
        return SourceSystem.AWS
    try:
        return SourceSystem(value.lower())
    except ValueError as e:
        raise ValidationError(f"Source system must be aws or azure, got {value!r}") from e


def candidate_key(row: Mapping[str, Any], default_region: str = "us-east-1") -> str:
    """Composite dedupe key of a raw candidate row ('' when the id is missing)."""
    return dedupe_key(
        _get_str(row, ID_COLUMNS),
        _get_str(row, SERVICE_COLUMNS) or "",
        _get_str(row, REGION_COLUMNS) or default_region,
    )


def parse_candidate(row: Mapping[str, Any], config: IngestConfig) -> ParsedCandidate | None:
    """Reduce a raw row to a ParsedCandidate.

    Returns:
        None when the row has no resource id (nothing to dedupe on)

    Raises:
        ValidationError: If a present field cannot be interpreted
    """
    if not isinstance(row, Mapping):
        raise ValidationError(f"Candidate must be a mapping, got {type(row).__name__}")

    resource_id = _get_str(row, ID_COLUMNS)
    if not resource_id:
        return None

    service = _get_str(row, SERVICE_COLUMNS) or ""
    region = _get_str(row, REGION_COLUMNS) or config.default_region
    key = dedupe_key(resource_id, service, region)

    storage = _non_negative(_get_float(row, STORAGE_COLUMNS))
    currency = (_get_str(row, CURRENCY_COLUMNS) or config.default_currency).upper()

    fields = {
        "name": _get_str(row, NAME_COLUMNS) or resource_id,
        "resource_kind": _get_kind(row),
        "source_system": _get_source(row),
        "cpu_cores": _non_negative(_get_float(row, CPU_COLUMNS)),
        "memory_gib": _non_negative(_get_float(row, MEMORY_COLUMNS)),
        "operating_system": _get_str(row, OS_COLUMNS) or config.default_os,
        "monthly_traffic_gib": _non_negative(_get_float(row, TRAFFIC_COLUMNS)),
        "dependency_ids": _get_dependencies(row),
    }

    return ParsedCandidate(
        key=key,
        resource_id=resource_id,
        service_label=service,
        region=region,
        cost_delta=_get_float(row, COST_COLUMNS),
        currency=currency,
        storage_gib=storage,
        fields=fields,
    )


def build_record(candidate: ParsedCandidate, record_id: str, source_name: str | None = None) -> Record:
    """Construct a new Record from a parsed candidate.

    Raises:
        ValidationError: If the resulting record violates a Record invariant
            (e.g. a negative opening cost)
    """
    return Record.build(
        id=record_id,
        resource_id=candidate.resource_id if record_id != candidate.resource_id else None,
        service_label=candidate.service_label,
        region=candidate.region,
        storage_gib=candidate.storage_gib,
        monthly_cost={"amount": candidate.cost_delta, "currency": candidate.currency},
        source_files=(source_name,) if source_name else (),
        **candidate.fields,
    )
