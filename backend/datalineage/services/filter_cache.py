"""
Saved filter selections, keyed by item and source, with a short TTL.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from datalineage.exceptions import CacheUnavailableError, StorageQuotaError
from datalineage.models.cache import FilterCacheEntry
from datalineage.models.filters import FilterState
from datalineage.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

FILTER_CACHE_PREFIX = "datalineage_filters_"
DEFAULT_TTL_HOURS = 24


class FilterCacheService:
    def __init__(
        self,
        store: KeyValueStore,
        item_id: str,
        source_id: Optional[int] = None,
        ttl_hours: int = DEFAULT_TTL_HOURS,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.item_id = item_id
        self.source_id = source_id
        self.ttl_hours = ttl_hours
        self._clock = clock

    @property
    def cache_key(self) -> str:
        if self.source_id is not None:
            return f"{FILTER_CACHE_PREFIX}{self.item_id}_src{self.source_id}"
        return f"{FILTER_CACHE_PREFIX}{self.item_id}"

    def set_source_id(self, source_id: Optional[int]) -> None:
        self.source_id = source_id

    def get(self) -> Optional[FilterCacheEntry]:
        """Saved selections, or None when missing, expired, unreadable or unreachable."""
        try:
            raw = self.store.get_item(self.cache_key)
        except CacheUnavailableError as e:
            logger.warning(f"Filter cache store unavailable: {e.message}")
            return None
        if raw is None:
            return None
        try:
            entry = FilterCacheEntry.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Removing unreadable filter cache {self.cache_key}: {e}")
            self.clear()
            return None

        if self._clock() - entry.timestamp > self.ttl_hours * 3600:
            self.clear()
            return None
        return entry

    def set(self, state: FilterState) -> None:
        entry = FilterCacheEntry.from_state(state, timestamp=self._clock())
        try:
            self.store.set_item(self.cache_key, entry.model_dump_json())
        except (StorageQuotaError, CacheUnavailableError) as e:
            logger.warning(f"Failed to save filter state {self.cache_key}: {e.message}")

    def clear(self) -> None:
        try:
            self.store.remove_item(self.cache_key)
        except CacheUnavailableError as e:
            logger.warning(f"Failed to clear filter state {self.cache_key}: {e.message}")

    def has_valid_cache(self) -> bool:
        return self.get() is not None
