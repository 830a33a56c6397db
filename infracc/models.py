"""InfraCC Pydantic models for type-safe record validation.

Records are immutable: every change produces a new instance that goes back
through the store's ``save``/``put`` path.
"""

from __future__ import annotations

import json
import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from infracc.canonical.key_generator import dedupe_key
from infracc.errors import ValidationError

DEFAULT_REGION = "us-east-1"
DEFAULT_OS = "linux"
DEFAULT_CURRENCY = "USD"


class ResourceKind(str, Enum):
    """Kind of discovered resource."""

    VM = "vm"
    DATABASE = "database"
    STORAGE = "storage"
    CONTAINER = "container"
    FUNCTION = "function"
    APPLICATION = "application"


class SourceSystem(str, Enum):
    """Cloud provider the record was discovered in."""

    AWS = "aws"
    AZURE = "azure"


class Money(BaseModel):
    """Non-negative monetary amount with an ISO currency code."""

    amount: float = 0.0
    currency: str = DEFAULT_CURRENCY

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("amount must be a finite number")
        if v < 0:
            raise ValueError("amount must be non-negative")
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("currency is required")
        return v

    def add(self, delta: float | Money) -> Money:
        """Return a new Money with ``delta`` added.

        Raises:
            ValueError: If ``delta`` is Money in another currency
        """
        if isinstance(delta, Money):
            if delta.currency != self.currency:
                raise ValueError(f"Cannot add {delta.currency} to {self.currency}")
            delta = delta.amount
        return Money(amount=self.amount + float(delta), currency=self.currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Money:
        return cls(amount=0.0, currency=currency)

    def __str__(self) -> str:
        return f"{self.amount:,.2f} {self.currency}"

    class Config:
        frozen = True


class Record(BaseModel):
    """A persisted cost/inventory record for one cloud resource."""

    id: str
    resource_id: str | None = None  # None means same as id
    name: str = ""
    service_label: str = ""
    resource_kind: ResourceKind = ResourceKind.VM
    source_system: SourceSystem = SourceSystem.AWS

    # Capacity
    cpu_cores: float = Field(default=0.0, ge=0)
    memory_gib: float = Field(default=0.0, ge=0)
    storage_gib: float = Field(default=0.0, ge=0)

    # Cost & placement
    monthly_cost: Money = Field(default_factory=Money.zero)
    region: str = DEFAULT_REGION
    operating_system: str = DEFAULT_OS
    monthly_traffic_gib: float = Field(default=0.0, ge=0)

    dependency_ids: frozenset[str] = frozenset()
    source_files: tuple[str, ...] = ()

    # Attached later by assessment/strategy components
    assessment: dict[str, Any] | None = None
    strategy: dict[str, Any] | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("id must be non-empty")
        return v

    @field_validator("resource_id")
    @classmethod
    def blank_resource_id(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("cpu_cores", "memory_gib", "storage_gib", "monthly_traffic_gib")
    @classmethod
    def validate_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("must be a finite number")
        return v

    @property
    def source_resource_id(self) -> str:
        """Resource identifier the dedupe key is built from."""
        return self.resource_id or self.id

    @property
    def dedupe_key(self) -> str:
        """Composite key used to merge candidates into this record."""
        return dedupe_key(self.source_resource_id, self.service_label, self.region)

    # Construction / serialization

    @classmethod
    def build(cls, **fields: Any) -> Record:
        """Construct a Record, raising the store's ValidationError on bad input."""
        try:
            return cls(**fields)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid record {fields.get('id')!r}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Plain attribute map; monthly cost flattened to amount + currency."""
        data = self.model_dump(mode="json")
        data["monthly_cost"] = self.monthly_cost.amount
        data["currency"] = self.monthly_cost.currency
        data["dependency_ids"] = sorted(self.dependency_ids)
        data["source_files"] = list(self.source_files)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        """Inverse of ``to_dict``."""
        if not isinstance(data, dict):
            raise ValidationError(f"Record data must be a mapping, got {type(data).__name__}")
        fields = dict(data)
        currency = fields.pop("currency", DEFAULT_CURRENCY)
        cost = fields.get("monthly_cost", 0.0)
        if not isinstance(cost, (dict, Money)):
            fields["monthly_cost"] = {"amount": cost, "currency": currency}
        return cls.build(**fields)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_json(cls, text: str | bytes) -> Record:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Stored record is not valid JSON: {e}") from e
        return cls.from_dict(data)

    # Copy-on-write helpers

    def with_cost(self, amount: float) -> Record:
        """Copy with a new monthly cost amount in the same currency."""
        return self.with_changes(monthly_cost={"amount": amount, "currency": self.monthly_cost.currency})

    def with_assessment(self, assessment: dict[str, Any]) -> Record:
        if not isinstance(assessment, dict):
            raise ValidationError("Assessment must be a mapping")
        return self.with_changes(assessment=dict(assessment))

    def with_strategy(self, strategy: dict[str, Any]) -> Record:
        if not isinstance(strategy, dict):
            raise ValidationError("Migration strategy must be a mapping")
        return self.with_changes(strategy=dict(strategy))

    def with_changes(self, **changes: Any) -> Record:
        """Validated copy with ``changes`` applied."""
        # Re-validate through build so copies obey the same invariants
        data = self.model_dump()
        data.update(changes)
        return Record.build(**data)

    # Business helpers

    def is_large(self) -> bool:
        """Large workloads need special migration handling."""
        return self.cpu_cores >= 16 or self.memory_gib >= 64

    def is_windows(self) -> bool:
        return "windows" in self.operating_system.lower()

    def is_containerized(self) -> bool:
        return self.resource_kind is ResourceKind.CONTAINER

    def resource_score(self) -> float:
        """Weighted 0-100 size score used for prioritization.

        Caps: 32 cores, 128 GiB memory, 1000 GiB storage, 10k monthly cost.
        """
        cpu = min(self.cpu_cores / 32, 1)
        memory = min(self.memory_gib / 128, 1)
        storage = min(self.storage_gib / 1000, 1)
        cost = min(self.monthly_cost.amount / 10000, 1)
        return (cpu * 0.3 + memory * 0.3 + storage * 0.2 + cost * 0.2) * 100

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "i-0abc123",
                "name": "web-01",
                "service_label": "EC2",
                "resource_kind": "vm",
                "source_system": "aws",
                "cpu_cores": 4,
                "memory_gib": 16,
                "storage_gib": 100,
                "monthly_cost": {"amount": 140.16, "currency": "USD"},
                "region": "us-east-1",
                "operating_system": "linux",
                "dependency_ids": ["db-01"],
            }
        }
