"""
Key-value string stores backing the lineage caches.

Cache reads and writes are synchronous and local. Two implementations:
- InMemoryKeyValueStore: process-local dict with an optional byte quota
- RedisKeyValueStore: synchronous Redis client; OOM replies become
  StorageQuotaError, other Redis failures CacheUnavailableError
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterator, List, Optional, Protocol, runtime_checkable

import redis
from redis.exceptions import RedisError, ResponseError

from datalineage.config.settings import CacheBackend
from datalineage.exceptions import CacheUnavailableError, StorageQuotaError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class InMemoryKeyValueStore:
    """
    Dict-backed store.

    ``max_bytes`` caps the summed length of keys and values; a write that
    would exceed it raises StorageQuotaError and leaves the store untouched.
    """

    def __init__(self, max_bytes: Optional[int] = None) -> None:
        self.max_bytes = max_bytes
        self._data: "OrderedDict[str, str]" = OrderedDict()

    def _size_without(self, key: str) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items() if k != key)

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.max_bytes is not None:
            projected = self._size_without(key) + len(key) + len(value)
            if projected > self.max_bytes:
                raise StorageQuotaError(
                    f"Storage quota exceeded: {projected} > {self.max_bytes} bytes",
                    key=key,
                )
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))


class RedisKeyValueStore:
    """
    Synchronous Redis-backed store.

    OOM replies become StorageQuotaError. Any other RedisError, such as a
    refused connection, becomes CacheUnavailableError.
    """

    def __init__(self, client: "redis.Redis", namespace: str = "") -> None:
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "") -> "RedisKeyValueStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get_item(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(self._key(key))
        except RedisError as e:
            raise CacheUnavailableError(f"Redis read failed: {e}", key=key) from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set_item(self, key: str, value: str) -> None:
        try:
            self.client.set(self._key(key), value)
        except ResponseError as e:
            if "OOM" in str(e):
                raise StorageQuotaError(f"Redis out of memory: {e}", key=key) from e
            raise CacheUnavailableError(f"Redis write failed: {e}", key=key) from e
        except RedisError as e:
            raise CacheUnavailableError(f"Redis write failed: {e}", key=key) from e

    def remove_item(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except RedisError as e:
            raise CacheUnavailableError(f"Redis delete failed: {e}", key=key) from e

    def keys(self, prefix: str = "") -> List[str]:
        found = []
        offset = len(self.namespace)
        try:
            for raw in self.client.scan_iter(match=f"{self._key(prefix)}*"):
                name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                found.append(name[offset:])
        except RedisError as e:
            raise CacheUnavailableError(f"Redis scan failed: {e}") from e
        return found

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False


def create_store(settings) -> KeyValueStore:
    """Store for ``CacheSettings.backend``."""
    if settings.backend == CacheBackend.REDIS:
        logger.info(f"Using Redis cache store at {settings.redis_url}")
        return RedisKeyValueStore.from_url(settings.redis_url)
    return InMemoryKeyValueStore()
