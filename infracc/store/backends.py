"""Backing store adapters for the record store.

A backing store is a plain async key-value service: per-key get/set/delete,
a key listing and a clear. No ordering or atomicity is assumed across keys.
Values are the JSON text of ``Record.to_dict()``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from infracc.errors import BackingStoreCorruptError, PersistenceError, StoreUnavailableError

logger = logging.getLogger(__name__)


class BackingStore(ABC):
    """Contract every backing store adapter implements."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` (idempotent)."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """List every key in this store."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is not an error."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key in this store."""

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""


class InMemoryBackingStore(BackingStore):
    """Process-local backing store for tests and dry runs.

    Args:
        latency: Optional per-call delay in seconds, so callers actually
            suspend as they would against a remote store
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.data: dict[str, str] = {}
        self.write_counts: Counter[str] = Counter()

    async def _suspend(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    async def get(self, key: str) -> str | None:
        await self._suspend()
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._suspend()
        self.data[key] = value
        self.write_counts[key] += 1

    async def keys(self) -> list[str]:
        await self._suspend()
        return list(self.data)

    async def delete(self, key: str) -> None:
        await self._suspend()
        self.data.pop(key, None)

    async def clear(self) -> None:
        await self._suspend()
        self.data.clear()


class RedisBackingStore(BackingStore):
    """Redis-backed store; every key lives under ``namespace``.

    Args:
        client: Async Redis client created with ``decode_responses=True``
        namespace: Key prefix isolating this store inside the Redis database
    """

    def __init__(self, client: redis.Redis, namespace: str = "infracc:records:"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "infracc:records:") -> RedisBackingStore:
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, namespace=namespace)

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(self._full_key(key))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e
        except RedisError as e:
            raise PersistenceError(key, f"Redis get failed: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(self._full_key(key), value)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e
        except RedisError as e:
            raise PersistenceError(key, f"Redis set failed: {e}") from e

    async def keys(self) -> list[str]:
        prefix_len = len(self.namespace)
        try:
            return [
                full_key[prefix_len:]
                async for full_key in self.client.scan_iter(match=f"{self.namespace}*", count=1000)
            ]
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e
        except ResponseError as e:
            raise BackingStoreCorruptError(f"Redis key scan failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._full_key(key))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e
        except RedisError as e:
            raise PersistenceError(key, f"Redis delete failed: {e}") from e

    async def clear(self) -> None:
        # Only this namespace; never FLUSHDB a shared database
        try:
            batch: list[str] = []
            deleted = 0
            async for full_key in self.client.scan_iter(match=f"{self.namespace}*", count=1000):
                batch.append(full_key)
                if len(batch) >= 1000:
                    deleted += await self.client.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await self.client.delete(*batch)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e

        logger.info(f"Cleared {deleted} keys under {self.namespace}")

    async def close(self) -> None:
        await self.client.aclose()
