"""
Bounded LRU cache of computed node positions.

Owned by the presentation adapter, one instance per session. Keys are the
visible node set plus the layout direction; reads refresh recency and the
least recently used entry is evicted first.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, FrozenSet, Iterable, Literal, Optional, Tuple

LayoutDirection = Literal["LR", "TB"]
Position = Tuple[float, float]
LayoutKey = Tuple[FrozenSet[str], LayoutDirection]

DEFAULT_MAX_ENTRIES = 10
DEFAULT_MIN_NODES = 300


class LayoutCache:
    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, min_nodes: int = DEFAULT_MIN_NODES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.min_nodes = min_nodes
        self._lru: "OrderedDict[LayoutKey, Dict[str, Position]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(node_ids: Iterable[str], direction: LayoutDirection) -> LayoutKey:
        return frozenset(node_ids), direction

    def should_cache(self, node_count: int) -> bool:
        """Small layouts are cheap to recompute and are not cached."""
        return node_count > self.min_nodes

    def get(self, node_ids: Iterable[str], direction: LayoutDirection) -> Optional[Dict[str, Position]]:
        key = self.make_key(node_ids, direction)
        positions = self._lru.get(key)
        if positions is None:
            self.misses += 1
            return None
        self._lru.move_to_end(key)
        self.hits += 1
        return dict(positions)

    def put(self, node_ids: Iterable[str], direction: LayoutDirection, positions: Dict[str, Position]) -> None:
        key = self.make_key(node_ids, direction)
        self._lru[key] = dict(positions)
        self._lru.move_to_end(key)
        while len(self._lru) > self.max_entries:
            self._lru.popitem(last=False)

    def clear(self) -> None:
        self._lru.clear()

    def __len__(self) -> int:
        return len(self._lru)

    def __contains__(self, key: object) -> bool:
        return key in self._lru
