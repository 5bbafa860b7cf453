from __future__ import annotations

import os
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from datalineage.models.lineage import ExternalRefType, LineageObject, ObjectKey, ObjectType
from datalineage.services.kv_store import RedisKeyValueStore


def pytest_configure() -> None:
    """
    Defaults for the `backend/tests` suite.

    Settings read a local `.env` unless DOCKER_CONTAINER is set. Set it here
    too so "run one test file" behaves the same as the full suite run.
    """

    os.environ.setdefault("DOCKER_CONTAINER", "true")


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


class FlakyRedis:
    """Dict-backed stand-in for the sync redis.Redis surface; every call fails while ``down``."""

    def __init__(self, down: bool = False) -> None:
        self.data: Dict[str, str] = {}
        self.down = down

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value
        return True

    def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    def scan_iter(self, match=None):
        self._check()
        prefix = (match or "*").rstrip("*")
        return iter([key for key in self.data if key.startswith(prefix)])

    def ping(self):
        self._check()
        return True


@pytest.fixture
def flaky_redis() -> FlakyRedis:
    return FlakyRedis()


@pytest.fixture
def redis_store(flaky_redis: FlakyRedis) -> RedisKeyValueStore:
    return RedisKeyValueStore(flaky_redis, namespace="test:")


NodeFactory = Callable[..., LineageObject]


@pytest.fixture
def make_node() -> NodeFactory:
    def factory(
        object_id: int,
        name: Optional[str] = None,
        *,
        schema: str = "dbo",
        object_type: ObjectType = ObjectType.TABLE,
        inputs: Sequence[int] = (),
        outputs: Sequence[int] = (),
        source_id: int = 1,
        external_ref_type: Optional[ExternalRefType] = None,
    ) -> LineageObject:
        is_external = external_ref_type is not None
        return LineageObject(
            key=ObjectKey(source_id, object_id),
            name=name or f"obj_{object_id}",
            schema_name="" if is_external else schema,
            object_type=ObjectType.EXTERNAL if is_external else object_type,
            inputs=tuple(ObjectKey(source_id, i) for i in inputs),
            outputs=tuple(ObjectKey(source_id, o) for o in outputs),
            is_external=is_external,
            external_ref_type=external_ref_type,
        )

    return factory


@pytest.fixture
def nodes_from_edges(make_node: NodeFactory) -> Callable[..., List[LineageObject]]:
    """Nodes wired by ``(source, target)`` object id pairs; every id becomes a table in ``dbo``."""

    def factory(edges: Iterable[Tuple[int, int]], extra: Iterable[int] = ()) -> List[LineageObject]:
        outputs: Dict[int, List[int]] = {}
        ids: Set[int] = set(extra)
        for source, target in edges:
            outputs.setdefault(source, []).append(target)
            ids.update((source, target))
        return [make_node(i, outputs=outputs.get(i, ())) for i in sorted(ids)]

    return factory
