import json

import pytest

from datalineage.exceptions import CacheUnavailableError, StorageQuotaError
from datalineage.models.lineage import Source
from datalineage.services.kv_store import InMemoryKeyValueStore
from datalineage.services.lineage_cache import CACHE_PREFIX, LineageCacheService

ENDPOINT = "https://lineage.example.com/graphql"
MINUTE = 60.0
DAY = 24 * 60 * MINUTE


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def payload(nodes_from_edges):
    return nodes_from_edges([(1, 2), (2, 3)])


def _cache(store, clock, source_id=1, item_id="item-1", ttl_minutes=60) -> LineageCacheService:
    return LineageCacheService(store, item_id, source_id, ttl_minutes=ttl_minutes, clock=clock)


@pytest.mark.unit
class TestKeys:
    def test_keys_are_scoped_by_item_and_source(self, store, clock):
        assert _cache(store, clock, source_id=None).cache_key == f"{CACHE_PREFIX}item-1"
        assert _cache(store, clock, source_id=7).cache_key == f"{CACHE_PREFIX}item-1_src7"
        assert _cache(store, clock).sources_key == f"{CACHE_PREFIX}item-1_sources"

    def test_set_source_id_switches_key(self, store, clock):
        cache = _cache(store, clock)
        cache.set_source_id(2)
        assert cache.cache_key.endswith("_src2")


@pytest.mark.unit
class TestFreshness:
    def test_round_trip(self, store, clock, payload):
        cache = _cache(store, clock)
        assert cache.set(payload, ENDPOINT)
        assert cache.get(ENDPOINT) == payload

    def test_ttl_boundary(self, store, clock, payload):
        cache = _cache(store, clock, ttl_minutes=60)
        cache.set(payload, ENDPOINT)

        clock.advance(59 * MINUTE)
        assert cache.has_valid_cache(ENDPOINT)
        assert cache.get_metadata().is_stale is False

        clock.advance(2 * MINUTE)
        assert not cache.has_valid_cache(ENDPOINT)
        metadata = cache.get_metadata()
        assert metadata.is_stale is True
        assert metadata.age_minutes == 61
        assert metadata.node_count == 3
        # staleness never hides data
        assert cache.get(ENDPOINT) == payload

    def test_endpoint_mismatch(self, store, clock, payload):
        cache = _cache(store, clock)
        cache.set(payload, ENDPOINT)

        assert cache.get("https://other.example.com/graphql") is None
        assert not cache.has_valid_cache("https://other.example.com/graphql")
        assert cache.get_stale() == payload

    def test_empty_store(self, store, clock):
        cache = _cache(store, clock)
        assert cache.get() is None
        assert cache.get_metadata() is None
        assert not cache.has_valid_cache()


@pytest.mark.unit
class TestSourceIsolation:
    def test_entry_from_other_source_is_never_served(self, store, clock, payload):
        source_one = _cache(store, clock, source_id=1)
        source_two = _cache(store, clock, source_id=2)
        source_one.set(payload, ENDPOINT)

        # an entry stamped with source 1 sitting under source 2's key
        store.set_item(source_two.cache_key, store.get_item(source_one.cache_key))

        assert source_two.get(ENDPOINT) is None
        assert source_two.get_stale() is None
        assert not source_two.has_valid_cache(ENDPOINT)

    def test_switching_source_reads_that_source(self, store, clock, payload):
        cache = _cache(store, clock, source_id=1)
        cache.set(payload, ENDPOINT)

        cache.set_source_id(2)
        assert cache.get(ENDPOINT) is None
        cache.set_source_id(1)
        assert cache.get(ENDPOINT) == payload


@pytest.mark.unit
class TestSelfHealing:
    def test_corrupt_entry_is_removed(self, store, clock):
        cache = _cache(store, clock)
        store.set_item(cache.cache_key, "{not json")

        assert cache.get() is None
        assert store.get_item(cache.cache_key) is None

    def test_wrong_shape_is_removed(self, store, clock):
        cache = _cache(store, clock)
        store.set_item(cache.cache_key, json.dumps({"schema_version": 1, "payload": "nope"}))

        assert cache.get_stale() is None
        assert store.get_item(cache.cache_key) is None

    def test_schema_version_mismatch_is_removed(self, store, clock, payload):
        cache = _cache(store, clock)
        cache.set(payload, ENDPOINT)
        document = json.loads(store.get_item(cache.cache_key))
        document["schema_version"] = 0
        store.set_item(cache.cache_key, json.dumps(document))

        assert cache.get() is None
        assert store.get_item(cache.cache_key) is None


@pytest.mark.unit
class TestQuota:
    def test_full_store_purges_old_entries_and_retries(self, store, clock, payload):
        old = _cache(store, clock, item_id="item-a")
        old.set(payload, ENDPOINT)
        store.max_bytes = sum(len(k) + len(store.get_item(k)) for k in store.keys()) + 10

        clock.advance(8 * DAY)
        fresh = _cache(store, clock, item_id="item-b")

        assert fresh.set(payload, ENDPOINT)
        assert store.get_item(old.cache_key) is None
        assert fresh.get(ENDPOINT) == payload

    def test_write_dropped_when_purge_is_not_enough(self, store, clock, payload):
        store.max_bytes = 10
        cache = _cache(store, clock)

        assert cache.set(payload, ENDPOINT) is False
        assert cache.get() is None

    def test_purge_keeps_recent_entries(self, store, clock, payload):
        recent = _cache(store, clock, item_id="recent")
        recent.set(payload, ENDPOINT)
        store.set_item(f"{CACHE_PREFIX}broken", "garbage")
        store.set_item("unrelated", "x")

        assert recent.purge_old_entries() == 1
        assert recent.get(ENDPOINT) == payload
        assert store.get_item("unrelated") == "x"


@pytest.mark.unit
class TestSourcesCache:
    def test_round_trip(self, store, clock):
        cache = _cache(store, clock)
        sources = [Source(source_id=1, database_name="dwh", is_active=True)]

        cache.set_cached_sources(sources)

        assert cache.get_cached_sources() == sources
        cache.set_source_id(5)
        assert cache.get_cached_sources() == sources

    def test_unreadable_sources_removed(self, store, clock):
        cache = _cache(store, clock)
        store.set_item(cache.sources_key, "[]")

        assert cache.get_cached_sources() is None
        assert store.get_item(cache.sources_key) is None

    def test_sources_stored_with_payload(self, store, clock, payload):
        cache = _cache(store, clock)
        cache.set(payload, ENDPOINT, sources=[Source(source_id=1, database_name="dwh")])
        assert [s.database_name for s in cache.get_sources()] == ["dwh"]


@pytest.mark.unit
def test_clear_and_clear_all(store, clock, payload):
    first = _cache(store, clock, item_id="a")
    second = _cache(store, clock, item_id="b")
    first.set(payload, ENDPOINT)
    second.set(payload, ENDPOINT)
    store.set_item("unrelated", "x")

    first.clear()
    assert first.get() is None
    assert second.get() == payload

    assert LineageCacheService.clear_all(store) == 1
    assert store.keys() == ["unrelated"]


@pytest.mark.unit
class TestUnavailableStore:
    def test_writes_are_dropped(self, flaky_redis, redis_store, clock, payload):
        cache = _cache(redis_store, clock)
        flaky_redis.down = True

        assert cache.set(payload, ENDPOINT) is False
        assert cache.set_cached_sources([Source(source_id=1, database_name="dwh")]) is False

    def test_reads_report_no_cache(self, flaky_redis, redis_store, clock, payload):
        cache = _cache(redis_store, clock)
        cache.set(payload, ENDPOINT)
        cache.set_cached_sources([Source(source_id=1, database_name="dwh")])
        flaky_redis.down = True

        assert cache.get(ENDPOINT) is None
        assert cache.get_stale() is None
        assert cache.get_metadata() is None
        assert cache.get_cached_sources() is None
        assert not cache.has_valid_cache(ENDPOINT)

        flaky_redis.down = False
        assert cache.get(ENDPOINT) == payload

    def test_quota_purge_during_outage_drops_write(self, clock, payload):
        class _FullThenDown(InMemoryKeyValueStore):
            def set_item(self, key, value):
                raise StorageQuotaError(key=key)

            def keys(self, prefix=""):
                raise CacheUnavailableError("Redis scan failed: connection refused")

        assert _cache(_FullThenDown(), clock).set(payload, ENDPOINT) is False
