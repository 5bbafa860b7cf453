"""
Stale-while-revalidate coordinator between the fetch orchestrator and the caches.

- a cache hit is served immediately; if it is stale one background refresh is scheduled
- background refreshes never receive a progress callback and never raise
- a failed foreground fetch falls back to stale cache data when there is any
- switching sources re-scopes both caches before touching the server
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from datalineage.exceptions import ConfigurationError, LineageError
from datalineage.models.filters import FilterAction, FilterCommand
from datalineage.models.lineage import LineageObject, Source, sort_sources
from datalineage.models.progress import ProgressCallback
from datalineage.services.filter_cache import FilterCacheService
from datalineage.services.filter_engine import FilterEngine
from datalineage.services.kv_store import KeyValueStore, create_store
from datalineage.services.lineage_cache import LineageCacheService
from datalineage.services.lineage_service import LineageService
from datalineage.services.token_provider import TokenProvider

logger = logging.getLogger(__name__)

RefreshListener = Callable[[List[LineageObject]], None]


@dataclass
class LoadResult:
    success: bool
    nodes: List[LineageObject] = field(default_factory=list)
    from_cache: bool = False
    is_stale_fallback: bool = False
    error: Optional[str] = None
    cache_age_minutes: Optional[int] = None


@dataclass
class SourcesResult:
    sources: List[Source] = field(default_factory=list)
    active_source_id: Optional[int] = None
    from_cache: bool = False
    error: Optional[str] = None


def _active_source(sources: List[Source]) -> Optional[Source]:
    return next((source for source in sources if source.is_active), None)


class LineageLoader:
    def __init__(
        self,
        service: LineageService,
        cache: LineageCacheService,
        filter_cache: Optional[FilterCacheService] = None,
    ) -> None:
        self.service = service
        self.cache = cache
        self.filter_cache = filter_cache
        self.source_id: Optional[int] = cache.source_id
        self.nodes: List[LineageObject] = []
        self.sources: List[Source] = []
        self._background: Optional[asyncio.Task] = None
        self._refresh_listeners: List[RefreshListener] = []

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        item_id: str,
        *,
        token_provider: Optional[TokenProvider] = None,
        store: Optional[KeyValueStore] = None,
        source_id: Optional[int] = None,
        **service_kwargs: Any,
    ) -> "LineageLoader":
        store = store if store is not None else create_store(settings.cache)
        return cls(
            LineageService.from_settings(settings, token_provider, **service_kwargs),
            LineageCacheService(
                store,
                item_id,
                source_id,
                ttl_minutes=settings.cache.data_ttl_minutes,
                purge_max_age_seconds=settings.cache.purge_max_age_days * 24 * 3600,
            ),
            FilterCacheService(store, item_id, source_id, ttl_hours=settings.cache.filter_ttl_hours),
        )

    @property
    def endpoint(self) -> str:
        return self.service.endpoint

    @property
    def background_task(self) -> Optional[asyncio.Task]:
        return self._background

    def on_refresh(self, listener: RefreshListener) -> Callable[[], None]:
        self._refresh_listeners.append(listener)

        def remove() -> None:
            if listener in self._refresh_listeners:
                self._refresh_listeners.remove(listener)

        return remove

    async def wait_for_refresh(self) -> None:
        """Wait for the pending background refresh, if any. Never raises its errors."""
        if self._background is not None:
            await asyncio.wait({self._background})

    def _scope(self, source_id: Optional[int]) -> None:
        self.source_id = source_id
        self.cache.set_source_id(source_id)
        if self.filter_cache is not None:
            self.filter_cache.set_source_id(source_id)

    # ------------------------------------------------------------------
    # Lineage data
    # ------------------------------------------------------------------

    async def load(
        self,
        *,
        skip_cache: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> LoadResult:
        if not skip_cache:
            cached = self.cache.get(self.endpoint)
            if cached:
                self.nodes = cached
                metadata = self.cache.get_metadata()
                if metadata is not None and metadata.is_stale:
                    self._schedule_refresh()
                return LoadResult(
                    success=True,
                    nodes=cached,
                    from_cache=True,
                    cache_age_minutes=metadata.age_minutes if metadata else None,
                )

        try:
            nodes = await self.service.fetch_lineage(self.source_id, on_progress=on_progress)
        except ConfigurationError:
            raise
        except LineageError as e:
            logger.warning(f"Lineage fetch failed for source {self.source_id}: {e.message}")
            stale = self.cache.get_stale()
            if stale:
                self.nodes = stale
                metadata = self.cache.get_metadata()
                return LoadResult(
                    success=False,
                    nodes=stale,
                    from_cache=True,
                    is_stale_fallback=True,
                    error=e.message,
                    cache_age_minutes=metadata.age_minutes if metadata else None,
                )
            return LoadResult(success=False, error=e.message)

        self.nodes = nodes
        self.cache.set(nodes, self.endpoint)
        return LoadResult(success=True, nodes=nodes, cache_age_minutes=0)

    def _schedule_refresh(self) -> None:
        if self._background is not None and not self._background.done():
            logger.debug("Background refresh already running")
            return
        self._background = asyncio.get_running_loop().create_task(
            self._refresh_in_background(self.source_id)
        )
        self._background.add_done_callback(self._handle_refresh_done)

    def _handle_refresh_done(self, task: asyncio.Task) -> None:
        try:
            task.result()
        except asyncio.CancelledError:
            logger.debug("Background refresh was cancelled")
        except Exception as e:
            logger.error(f"Background refresh task failed: {e}")

    async def _refresh_in_background(self, source_id: Optional[int]) -> None:
        try:
            nodes = await self.service.fetch_lineage(source_id)
        except Exception as e:
            logger.warning(f"Background refresh for source {source_id} failed: {e}")
            return

        if source_id != self.source_id:
            logger.info(f"Discarding background refresh for source {source_id}; now on {self.source_id}")
            return

        self.cache.set(nodes, self.endpoint)
        self.nodes = nodes
        logger.info(f"Background refresh replaced cached lineage ({len(nodes)} objects)")
        for listener in list(self._refresh_listeners):
            try:
                listener(nodes)
            except Exception as e:
                logger.error(f"Refresh listener {listener!r} failed: {e}")

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def load_sources(self) -> SourcesResult:
        """
        List sources and make sure one is active.

        When none is active the server is asked to activate the first
        alphabetical source and the list is fetched again. On failure the
        cached list is used.
        """
        try:
            sources = sort_sources(await self.service.fetch_sources())
            if sources and _active_source(sources) is None:
                await self.service.set_active_source()
                sources = sort_sources(await self.service.fetch_sources())
            self.cache.set_cached_sources(sources)
        except ConfigurationError:
            raise
        except LineageError as e:
            logger.warning(f"Failed to load sources: {e.message}")
            cached = self.cache.get_cached_sources()
            if not cached:
                return SourcesResult(error=e.message)
            self.sources = cached
            active = _active_source(cached)
            if active is not None:
                self._scope(active.source_id)
            return SourcesResult(
                sources=cached,
                active_source_id=active.source_id if active else None,
                from_cache=True,
                error=e.message,
            )

        self.sources = sources
        active = _active_source(sources)
        if active is not None:
            self._scope(active.source_id)
        return SourcesResult(sources=sources, active_source_id=active.source_id if active else None)

    async def switch_source(self, source_id: int) -> bool:
        """
        Re-scope to ``source_id``. Returns whether the server accepted the switch.

        The caches switch first so cached data for the new source is usable
        even when the server cannot be reached.
        """
        if source_id == self.source_id:
            return True

        self._scope(source_id)
        self.nodes = []

        updated = True
        try:
            await self.service.set_active_source(source_id)
        except LineageError as e:
            logger.warning(f"Could not update active source on server: {e.message}")
            updated = False

        self.sources = [
            source.model_copy(update={"is_active": source.source_id == source_id})
            for source in self.sources
        ]
        return updated

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def attach_filters(self, engine: FilterEngine) -> Callable[[], None]:
        """Restore saved selections into ``engine`` and persist later user changes."""
        saved = self.filter_cache.get() if self.filter_cache is not None else None
        engine.dispatch(FilterCommand.reload(FilterAction.RESTORE, saved))
        if self.filter_cache is None:
            return lambda: None
        return engine.subscribe(self.filter_cache.set)
