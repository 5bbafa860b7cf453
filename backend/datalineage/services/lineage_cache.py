"""
Lineage data cache (stale-while-revalidate).

Entries are JSON documents in a KeyValueStore, keyed by item and source:
``datalineage_cache_{item_id}`` or ``datalineage_cache_{item_id}_src{source_id}``.

Read rules:
- ``get`` ignores TTL; staleness is informational only
- ``has_valid_cache`` additionally requires ``age < ttl``
- a schema version mismatch deletes the entry
- an entry stamped with another source id is never returned
- undecodable entries are deleted and reported as "no cache"
- an unreachable store reads as "no cache"; writes to it are dropped
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, List, Optional

from pydantic import ValidationError

from datalineage.exceptions import CacheCorruptionError, CacheUnavailableError, StorageQuotaError
from datalineage.models.cache import CACHE_SCHEMA_VERSION, CacheEntry, CacheMetadata, SourcesCacheEntry
from datalineage.models.lineage import LineageObject, Source
from datalineage.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "datalineage_cache_"
DEFAULT_TTL_MINUTES = 60 * 24 * 7
PURGE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

Clock = Callable[[], float]


class _SchemaMismatch(Exception):
    pass


def _decode_document(key: str, raw: str) -> dict:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise CacheCorruptionError(key, f"invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise CacheCorruptionError(key, "entry is not a JSON object")
    return data


class LineageCacheService:
    def __init__(
        self,
        store: KeyValueStore,
        item_id: str,
        source_id: Optional[int] = None,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        *,
        purge_max_age_seconds: int = PURGE_MAX_AGE_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.store = store
        self.item_id = item_id
        self.source_id = source_id
        self.ttl_minutes = ttl_minutes
        self.purge_max_age_seconds = purge_max_age_seconds
        self._clock = clock

    @property
    def cache_key(self) -> str:
        if self.source_id is not None:
            return f"{CACHE_PREFIX}{self.item_id}_src{self.source_id}"
        return f"{CACHE_PREFIX}{self.item_id}"

    @property
    def sources_key(self) -> str:
        return f"{CACHE_PREFIX}{self.item_id}_sources"

    def set_source_id(self, source_id: Optional[int]) -> None:
        self.source_id = source_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _parse(self, key: str, raw: str) -> CacheEntry:
        data = _decode_document(key, raw)
        if data.get("schema_version") != CACHE_SCHEMA_VERSION:
            raise _SchemaMismatch(data.get("schema_version"))
        try:
            return CacheEntry.model_validate(data)
        except ValidationError as e:
            raise CacheCorruptionError(key, f"invalid shape ({e.error_count()} errors)") from e

    def _get_raw(self, key: str) -> Optional[str]:
        try:
            return self.store.get_item(key)
        except CacheUnavailableError as e:
            logger.warning(f"Cache store unavailable reading {key}: {e.message}")
            return None

    def _discard(self, key: str) -> None:
        try:
            self.store.remove_item(key)
        except CacheUnavailableError as e:
            logger.warning(f"Could not remove cache entry {key}: {e.message}")

    def _read(self) -> Optional[CacheEntry]:
        key = self.cache_key
        raw = self._get_raw(key)
        if raw is None:
            return None
        try:
            return self._parse(key, raw)
        except _SchemaMismatch as e:
            logger.info(f"Dropping cache {key} written with schema version {e}")
            self._discard(key)
        except CacheCorruptionError as e:
            logger.warning(f"{e.message}; removing entry")
            self._discard(key)
        return None

    def _matches_source(self, entry: CacheEntry) -> bool:
        return entry.source_id is None or entry.source_id == self.source_id

    def _age_seconds(self, entry: CacheEntry) -> float:
        return self._clock() - entry.timestamp

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._age_seconds(entry) < self.ttl_minutes * 60

    def get(self, endpoint: Optional[str] = None) -> Optional[List[LineageObject]]:
        """Cached payload regardless of age, or None."""
        entry = self._read()
        if entry is None or not self._matches_source(entry):
            return None
        if endpoint and entry.endpoint != endpoint:
            return None
        return list(entry.payload)

    def has_valid_cache(self, endpoint: Optional[str] = None) -> bool:
        entry = self._read()
        if entry is None or not self._matches_source(entry):
            return False
        if endpoint and entry.endpoint != endpoint:
            return False
        return self._is_fresh(entry)

    def get_stale(self) -> Optional[List[LineageObject]]:
        """Payload for the failed-fetch fallback; ignores TTL and endpoint."""
        entry = self._read()
        if entry is None or not self._matches_source(entry):
            return None
        return list(entry.payload)

    def get_metadata(self) -> Optional[CacheMetadata]:
        entry = self._read()
        if entry is None or not self._matches_source(entry):
            return None
        age = self._age_seconds(entry)
        return CacheMetadata(
            timestamp=entry.timestamp,
            node_count=len(entry.payload),
            endpoint=entry.endpoint,
            age_minutes=int(round(age / 60)),
            is_stale=not self._is_fresh(entry),
        )

    def get_sources(self) -> Optional[List[Source]]:
        entry = self._read()
        if entry is None or entry.sources is None:
            return None
        return list(entry.sources)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write(self, key: str, document: str) -> bool:
        try:
            return self._write_with_purge(key, document)
        except CacheUnavailableError as e:
            logger.warning(f"Cache write for {key} dropped, store unavailable: {e.message}")
            return False

    def _write_with_purge(self, key: str, document: str) -> bool:
        try:
            self.store.set_item(key, document)
            return True
        except StorageQuotaError:
            removed = self.purge_old_entries()
            logger.warning(f"Cache storage full writing {key}; purged {removed} old entries")

        try:
            self.store.set_item(key, document)
            return True
        except StorageQuotaError as e:
            logger.warning(f"Cache write for {key} dropped after purge: {e.message}")
            return False

    def set(
        self,
        payload: List[LineageObject],
        endpoint: str,
        sources: Optional[List[Source]] = None,
    ) -> bool:
        """Overwrite the entry for the current item and source. Best effort."""
        entry = CacheEntry(
            payload=list(payload),
            sources=list(sources) if sources is not None else None,
            timestamp=self._clock(),
            endpoint=endpoint or "",
            source_id=self.source_id,
            schema_version=CACHE_SCHEMA_VERSION,
        )
        return self._write(self.cache_key, entry.model_dump_json())

    def set_cached_sources(self, sources: List[Source]) -> bool:
        entry = SourcesCacheEntry(sources=list(sources), timestamp=self._clock())
        return self._write(self.sources_key, entry.model_dump_json())

    def get_cached_sources(self) -> Optional[List[Source]]:
        key = self.sources_key
        raw = self._get_raw(key)
        if raw is None:
            return None
        try:
            data = _decode_document(key, raw)
            if data.get("schema_version") != CACHE_SCHEMA_VERSION:
                raise CacheCorruptionError(key, "schema version mismatch")
            entry = SourcesCacheEntry.model_validate(data)
        except (CacheCorruptionError, ValidationError) as e:
            logger.warning(f"Removing unreadable sources cache {key}: {e}")
            self._discard(key)
            return None
        return list(entry.sources)

    def purge_old_entries(self) -> int:
        """Delete entries older than the purge window, and any that cannot be read."""
        now = self._clock()
        removed = 0
        for key in self.store.keys(CACHE_PREFIX):
            raw = self.store.get_item(key)
            if raw is None:
                continue
            try:
                timestamp = float(_decode_document(key, raw)["timestamp"])
            except (CacheCorruptionError, KeyError, TypeError, ValueError):
                self.store.remove_item(key)
                removed += 1
                continue
            if now - timestamp > self.purge_max_age_seconds:
                self.store.remove_item(key)
                removed += 1
        return removed

    def clear(self) -> None:
        self.store.remove_item(self.cache_key)

    @staticmethod
    def clear_all(store: KeyValueStore) -> int:
        keys = store.keys(CACHE_PREFIX)
        for key in keys:
            store.remove_item(key)
        return len(keys)
