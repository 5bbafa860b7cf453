import pytest

from datalineage.exceptions import StorageQuotaError
from datalineage.models.filters import FilterState
from datalineage.models.lineage import ObjectType
from datalineage.services.filter_cache import FILTER_CACHE_PREFIX, FilterCacheService
from datalineage.services.kv_store import InMemoryKeyValueStore

HOUR = 3600.0


@pytest.fixture
def state() -> FilterState:
    return FilterState(
        selected_schemas=frozenset({"sales"}),
        selected_object_types=frozenset({ObjectType.TABLE}),
        hide_isolated=True,
        focus_schema="sales",
    )


@pytest.mark.unit
def test_round_trip(clock, state):
    cache = FilterCacheService(InMemoryKeyValueStore(), "item-1", 3, clock=clock)

    cache.set(state)
    entry = cache.get()

    assert cache.cache_key == f"{FILTER_CACHE_PREFIX}item-1_src3"
    assert entry.selected_schemas == ["sales"]
    assert entry.selected_object_types == [ObjectType.TABLE]
    assert entry.hide_isolated is True
    assert entry.focus_schema == "sales"
    assert cache.has_valid_cache()


@pytest.mark.unit
def test_expired_entry_is_cleared(clock, state):
    store = InMemoryKeyValueStore()
    cache = FilterCacheService(store, "item-1", ttl_hours=24, clock=clock)
    cache.set(state)

    clock.advance(23 * HOUR)
    assert cache.get() is not None

    clock.advance(2 * HOUR)
    assert cache.get() is None
    assert store.get_item(cache.cache_key) is None


@pytest.mark.unit
def test_sources_do_not_share_filters(clock, state):
    store = InMemoryKeyValueStore()
    cache = FilterCacheService(store, "item-1", 1, clock=clock)
    cache.set(state)

    cache.set_source_id(2)
    assert cache.get() is None


@pytest.mark.unit
def test_unreadable_entry_is_cleared(clock):
    store = InMemoryKeyValueStore()
    cache = FilterCacheService(store, "item-1", clock=clock)
    store.set_item(cache.cache_key, "][")

    assert cache.get() is None
    assert store.get_item(cache.cache_key) is None


@pytest.mark.unit
def test_quota_failures_are_swallowed(clock, state):
    store = InMemoryKeyValueStore(max_bytes=5)
    cache = FilterCacheService(store, "item-1", clock=clock)

    cache.set(state)

    assert cache.get() is None
    with pytest.raises(StorageQuotaError):
        store.set_item(cache.cache_key, "{}")


@pytest.mark.unit
def test_unreachable_store_is_tolerated(flaky_redis, redis_store, clock, state):
    cache = FilterCacheService(redis_store, "item-1", 3, clock=clock)
    cache.set(state)
    flaky_redis.down = True

    cache.set(state.model_copy(update={"hide_isolated": False}))
    assert cache.get() is None
    cache.clear()

    flaky_redis.down = False
    assert cache.get().hide_isolated is True
