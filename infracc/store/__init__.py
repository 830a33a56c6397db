"""Record store: in-memory cache, coalesced write-back and bulk loading."""

from infracc.store.backends import BackingStore, InMemoryBackingStore, RedisBackingStore
from infracc.store.cache import RecordCache
from infracc.store.coalescer import FlushStats, WriteCoalescer
from infracc.store.loader import BulkLoader, LoadStats
from infracc.store.repository import RecordStore, StoreStats, open_store

__all__ = [
    "BackingStore",
    "InMemoryBackingStore",
    "RedisBackingStore",
    "RecordCache",
    "WriteCoalescer",
    "FlushStats",
    "BulkLoader",
    "LoadStats",
    "RecordStore",
    "StoreStats",
    "open_store",
]
