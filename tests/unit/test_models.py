"""Unit tests for InfraCC Pydantic models.

Tests data validation, field constraints, serialization and model helpers.
"""

from __future__ import annotations

import pytest

from infracc.errors import ValidationError
from infracc.models import Money, Record, ResourceKind, SourceSystem


class TestMoney:
    """Test Money validation and arithmetic."""

    def test_currency_is_uppercased(self):
        assert Money(amount=10, currency="usd").currency == "USD"

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            Money(amount=-1)

    def test_non_finite_amount_rejected(self):
        with pytest.raises(ValueError):
            Money(amount=float("nan"))

    def test_add_float(self):
        assert Money(amount=100).add(50).amount == pytest.approx(150)

    def test_add_money_same_currency(self):
        total = Money(amount=1.5, currency="EUR").add(Money(amount=2, currency="EUR"))

        assert total.amount == pytest.approx(3.5)
        assert total.currency == "EUR"

    def test_add_rejects_currency_mismatch(self):
        with pytest.raises(ValueError, match="Cannot add"):
            Money(amount=1, currency="USD").add(Money(amount=1, currency="EUR"))

    def test_str(self):
        assert str(Money(amount=1234.5)) == "1,234.50 USD"


class TestRecord:
    """Test Record validation and invariants."""

    def test_minimal_record_defaults(self):
        """Only the id is required."""
        record = Record.build(id="i-001")

        assert record.region == "us-east-1"
        assert record.operating_system == "linux"
        assert record.resource_kind is ResourceKind.VM
        assert record.source_system is SourceSystem.AWS
        assert record.monthly_cost == Money.zero()
        assert record.dependency_ids == frozenset()

    def test_blank_id_rejected(self):
        with pytest.raises(ValidationError):
            Record.build(id="   ")

    def test_negative_capacity_rejected(self):
        with pytest.raises(ValidationError):
            Record.build(id="i-001", cpu_cores=-2)

    def test_validation_error_is_value_error(self):
        """Callers catching ValueError also catch record validation errors."""
        with pytest.raises(ValueError):
            Record.build(id="i-001", memory_gib=float("inf"))

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            Record.build(id="i-001", resource_kind="mainframe")

    def test_records_are_immutable(self, sample_record):
        with pytest.raises(Exception):
            sample_record.region = "eu-west-1"

    def test_dedupe_key_uses_resource_id(self):
        """A derived id still dedupes on the source resource id."""
        record = Record.build(id="i-001:abcd1234", resource_id="i-001", service_label="EC2")

        assert record.source_resource_id == "i-001"
        assert record.dedupe_key == "i-001|ec2|us-east-1"

    def test_blank_resource_id_falls_back_to_id(self):
        record = Record.build(id="i-001", resource_id=" ")

        assert record.resource_id is None
        assert record.source_resource_id == "i-001"


class TestRecordSerialization:
    """Test to_dict/from_dict and JSON forms."""

    def test_to_dict_flattens_cost(self, record_factory):
        record = record_factory(monthly_cost={"amount": 12.5, "currency": "EUR"})

        data = record.to_dict()

        assert data["monthly_cost"] == 12.5
        assert data["currency"] == "EUR"
        assert data["resource_kind"] == "vm"

    def test_dict_round_trip(self, record_factory):
        record = record_factory(
            dependency_ids={"db-01", "cache-01"},
            source_files=("a.csv", "b.csv"),
            assessment={"complexity": 3},
        )

        assert Record.from_dict(record.to_dict()) == record

    def test_dependency_ids_are_sorted(self, record_factory):
        data = record_factory(dependency_ids={"b", "a"}).to_dict()

        assert data["dependency_ids"] == ["a", "b"]

    def test_json_round_trip(self, sample_record):
        assert Record.from_json(sample_record.to_json()) == sample_record

    def test_from_json_rejects_garbage(self):
        with pytest.raises(ValidationError, match="not valid JSON"):
            Record.from_json("{not json")

    def test_from_dict_rejects_non_mapping(self):
        with pytest.raises(ValidationError):
            Record.from_dict(["i-001"])


class TestRecordCopies:
    """Test copy-on-write helpers."""

    def test_with_cost_keeps_currency(self, record_factory):
        record = record_factory(monthly_cost={"amount": 1, "currency": "EUR"})

        updated = record.with_cost(99)

        assert updated.monthly_cost == Money(amount=99, currency="EUR")
        assert record.monthly_cost.amount == 1

    def test_with_cost_rejects_negative(self, sample_record):
        with pytest.raises(ValidationError):
            sample_record.with_cost(-5)

    def test_with_assessment(self, sample_record):
        assert sample_record.with_assessment({"score": 7}).assessment == {"score": 7}

    def test_with_strategy_requires_mapping(self, sample_record):
        with pytest.raises(ValidationError):
            sample_record.with_strategy("rehost")


class TestRecordHelpers:
    """Test business helpers."""

    def test_is_large_by_cpu(self, record_factory):
        assert record_factory(cpu_cores=16, memory_gib=8).is_large()

    def test_is_large_by_memory(self, record_factory):
        assert record_factory(cpu_cores=2, memory_gib=64).is_large()

    def test_small_record_not_large(self, record_factory):
        assert not record_factory(cpu_cores=4, memory_gib=16).is_large()

    def test_is_windows(self, record_factory):
        assert record_factory(operating_system="Windows Server 2019").is_windows()
        assert not record_factory(operating_system="linux").is_windows()

    def test_is_containerized(self, record_factory):
        assert record_factory(resource_kind=ResourceKind.CONTAINER).is_containerized()

    def test_resource_score_caps_at_100(self, record_factory):
        record = record_factory(
            cpu_cores=64,
            memory_gib=512,
            storage_gib=5000,
            monthly_cost={"amount": 50000, "currency": "USD"},
        )

        assert record.resource_score() == pytest.approx(100)

    def test_resource_score_weights(self, record_factory):
        # 16/32 cpu * 0.3 + 64/128 memory * 0.3 = 0.3 -> 30
        record = record_factory(
            cpu_cores=16,
            memory_gib=64,
            storage_gib=0,
            monthly_cost={"amount": 0, "currency": "USD"},
        )

        assert record.resource_score() == pytest.approx(30)
