"""
Directed lineage graph over LineageObject nodes.

Built once per node set and never patched:
- one vertex per object key
- one edge per (input -> node) and (node -> output) pair, de-duplicated
- self edges and edges to unknown objects are dropped
- ``is_bidirectional`` is computed once, after all edges exist
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Union

import networkx as nx

from datalineage.models.lineage import LineageDirection, LineageEdge, LineageObject, ObjectKey

KeyLike = Union[ObjectKey, str]


def as_key(value: KeyLike) -> ObjectKey:
    return ObjectKey.parse(value)


class LineageGraphModel:
    def __init__(self, nodes: Iterable[LineageObject] = ()) -> None:
        self.graph = nx.DiGraph()
        self._objects: Dict[ObjectKey, LineageObject] = {}

        for node in nodes:
            if node.key in self._objects:
                continue
            self._objects[node.key] = node
            self.graph.add_node(node.key)

        for node in self._objects.values():
            for source in node.inputs:
                self._add_edge(source, node.key)
            for target in node.outputs:
                self._add_edge(node.key, target)

        for source, target in self.graph.edges:
            self.graph.edges[source, target]["is_bidirectional"] = self.graph.has_edge(target, source)

    def _add_edge(self, source: ObjectKey, target: ObjectKey) -> None:
        if source == target:
            return
        if source not in self._objects or target not in self._objects:
            return
        self.graph.add_edge(source, target)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    @property
    def node_count(self) -> int:
        return self.graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self.graph.number_of_edges()

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, key: object) -> bool:
        try:
            return self.has_node(key)  # type: ignore[arg-type]
        except ValueError:
            return False

    def __iter__(self) -> Iterator[ObjectKey]:
        return iter(self._objects)

    def has_node(self, key: KeyLike) -> bool:
        return as_key(key) in self._objects

    def get_node(self, key: KeyLike) -> Optional[LineageObject]:
        return self._objects.get(as_key(key))

    def nodes(self) -> List[LineageObject]:
        return list(self._objects.values())

    # ------------------------------------------------------------------
    # Adjacency
    # ------------------------------------------------------------------

    def successors(self, key: KeyLike) -> List[ObjectKey]:
        key = as_key(key)
        if key not in self._objects:
            return []
        return list(self.graph.successors(key))

    def predecessors(self, key: KeyLike) -> List[ObjectKey]:
        key = as_key(key)
        if key not in self._objects:
            return []
        return list(self.graph.predecessors(key))

    def neighbors(self, key: KeyLike, direction: LineageDirection = "both") -> List[ObjectKey]:
        if direction == "downstream":
            return self.successors(key)
        if direction == "upstream":
            return self.predecessors(key)
        if direction != "both":
            raise ValueError(f"Unknown direction: {direction!r}")
        return list(dict.fromkeys(self.predecessors(key) + self.successors(key)))

    def degree(self, key: KeyLike) -> int:
        key = as_key(key)
        return self.graph.degree(key) if key in self._objects else 0

    def in_degree(self, key: KeyLike) -> int:
        key = as_key(key)
        return self.graph.in_degree(key) if key in self._objects else 0

    def out_degree(self, key: KeyLike) -> int:
        key = as_key(key)
        return self.graph.out_degree(key) if key in self._objects else 0

    def has_edge(self, source: KeyLike, target: KeyLike) -> bool:
        return self.graph.has_edge(as_key(source), as_key(target))

    def is_bidirectional(self, source: KeyLike, target: KeyLike) -> bool:
        source, target = as_key(source), as_key(target)
        if not self.graph.has_edge(source, target):
            return False
        return bool(self.graph.edges[source, target].get("is_bidirectional"))

    def edges(self) -> List[LineageEdge]:
        return [
            LineageEdge(source=u, target=v, is_bidirectional=bool(data.get("is_bidirectional")))
            for u, v, data in self.graph.edges(data=True)
        ]

    def render_edges(self) -> List[LineageEdge]:
        """One edge per connection; a bidirectional pair is emitted once."""
        rendered: List[LineageEdge] = []
        emitted = set()
        for u, v, data in self.graph.edges(data=True):
            if data.get("is_bidirectional"):
                pair = frozenset((u, v))
                if pair in emitted:
                    continue
                emitted.add(pair)
            rendered.append(LineageEdge(source=u, target=v, is_bidirectional=bool(data.get("is_bidirectional"))))
        return rendered

    def adjacency(self) -> Dict[ObjectKey, FrozenSet[ObjectKey]]:
        return {key: frozenset(self.graph.successors(key)) for key in self.graph.nodes}

    def to_networkx(self) -> nx.DiGraph:
        return self.graph.copy()
