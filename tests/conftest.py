"""Pytest configuration and fixtures for InfraCC tests.

Provides common fixtures for testing.
"""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio

import infracc.config
from infracc.config import IngestConfig, StoreConfig
from infracc.models import Record, SourceSystem
from infracc.store.backends import InMemoryBackingStore
from infracc.store.repository import RecordStore

CONFIG_ENV_VARS = [
    "REDIS_URL",
    "REDIS_NAMESPACE",
    "STORE_DEBOUNCE_MS",
    "STORE_FLUSH_BATCH_SIZE",
    "STORE_LOAD_CHUNK_SIZE",
    "STORE_LOAD_CHUNK_THRESHOLD",
    "STORE_FLUSH_TIMEOUT",
    "STORE_CLEAR_ON_CORRUPT_LOAD",
    "INGEST_BATCH_SIZE",
    "INGEST_COST_EPSILON",
    "INGEST_TIMEOUT",
    "INGEST_DEFAULT_REGION",
    "INGEST_DEFAULT_OS",
    "INGEST_DEFAULT_CURRENCY",
    "INGEST_MAX_ERROR_MESSAGES",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "JSON_LOGS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from the developer's environment and .env file."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(infracc.config, "_config", None)


@pytest.fixture(autouse=True)
def restore_root_logging():
    """configure_logging replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def backend() -> InMemoryBackingStore:
    """Empty in-memory backing store."""
    return InMemoryBackingStore()


@pytest.fixture
def store_config() -> StoreConfig:
    """Store tuning shrunk for fast tests."""
    return StoreConfig(
        debounce_seconds=0.01,
        flush_batch_size=50,
        load_chunk_size=100,
        load_chunk_threshold=100,
        flush_timeout_seconds=5.0,
    )


@pytest.fixture
def ingest_config() -> IngestConfig:
    """Ingestion tuning shrunk for fast tests."""
    return IngestConfig(batch_size=100, timeout_seconds=30.0)


@pytest_asyncio.fixture
async def store(backend: InMemoryBackingStore, store_config: StoreConfig):
    """Opened RecordStore over the in-memory backend, closed after the test."""
    record_store = RecordStore(backend, store_config)
    await record_store.open()
    yield record_store
    await record_store.close()


def make_record(record_id: str = "i-001", **overrides) -> Record:
    """Build a Record with realistic defaults."""
    fields = {
        "id": record_id,
        "name": f"web-{record_id}",
        "service_label": "EC2",
        "region": "us-east-1",
        "cpu_cores": 4,
        "memory_gib": 16,
        "storage_gib": 100,
        "monthly_cost": {"amount": 140.0, "currency": "USD"},
        "source_system": SourceSystem.AWS,
    }
    fields.update(overrides)
    return Record.build(**fields)


@pytest.fixture
def sample_record() -> Record:
    """Single EC2 record."""
    return make_record()


@pytest.fixture
def record_factory():
    """Factory building Records: ``record_factory("i-002", region="eu-west-1")``."""
    return make_record
