"""
Lineage tracing over a LineageGraphModel.

Level mode (no end node):
    BFS from the start node, inbound up to ``upstream_levels`` hops and
    outbound up to ``downstream_levels`` hops. The start node is always traced.

Path mode (end node present in the graph):
    Paths start -> ... -> end over out-edges, plus the same paths searched
    again by walking in-edges from the end node back to the start. An end
    node upstream of the start yields nothing. BFS entries carry their whole
    path. A node is expanded at most ``MAX_PATH_VISITS_PER_NODE`` times
    per directional search and is never appended to a path that already holds
    it, so cycles terminate. In dense cyclic graphs some paths may be missed.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, List, Literal, Optional, Set, Tuple

import networkx as nx

from datalineage.models.lineage import UNBOUNDED_LEVELS, ObjectKey, TraceConfig
from datalineage.services.graph_model import KeyLike, LineageGraphModel, as_key

logger = logging.getLogger(__name__)

MAX_PATH_VISITS_PER_NODE = 3

EdgeKey = Tuple[ObjectKey, ObjectKey]
TraceMode = Literal["none", "level", "path"]


def _cutoff(levels: int, graph: LineageGraphModel) -> Optional[int]:
    if levels >= UNBOUNDED_LEVELS or levels >= graph.node_count:
        return None
    return levels


def trace_levels(
    graph: LineageGraphModel,
    start: KeyLike,
    upstream_levels: int,
    downstream_levels: int,
) -> Set[ObjectKey]:
    start = as_key(start)
    if not graph.has_node(start):
        return set()

    traced = {start}
    if upstream_levels > 0:
        reachable = nx.single_source_shortest_path_length(
            graph.graph.reverse(copy=False), start, cutoff=_cutoff(upstream_levels, graph)
        )
        traced.update(reachable)
    if downstream_levels > 0:
        reachable = nx.single_source_shortest_path_length(
            graph.graph, start, cutoff=_cutoff(downstream_levels, graph)
        )
        traced.update(reachable)
    return traced


def find_directional_paths(
    graph: LineageGraphModel,
    source: ObjectKey,
    target: ObjectKey,
    direction: Literal["downstream", "upstream"],
    max_visits: int = MAX_PATH_VISITS_PER_NODE,
) -> List[List[ObjectKey]]:
    """Paths from ``source`` to ``target`` following out-edges (downstream) or in-edges (upstream)."""
    step = graph.successors if direction == "downstream" else graph.predecessors
    paths: List[List[ObjectKey]] = []
    queue: Deque[Tuple[ObjectKey, List[ObjectKey]]] = deque([(source, [source])])
    visits: Dict[ObjectKey, int] = {}

    while queue:
        current, path = queue.popleft()
        if current == target:
            paths.append(path)
            continue

        count = visits.get(current, 0)
        if count >= max_visits:
            continue
        visits[current] = count + 1

        for neighbor in step(current):
            if neighbor in path:
                continue
            queue.append((neighbor, path + [neighbor]))

    return paths


def find_paths_between(graph: LineageGraphModel, start: KeyLike, end: KeyLike) -> Set[ObjectKey]:
    start, end = as_key(start), as_key(end)
    if not graph.has_node(start) or not graph.has_node(end):
        return set()

    traced: Set[ObjectKey] = set()
    for path in find_directional_paths(graph, start, end, "downstream"):
        traced.update(path)
    for path in find_directional_paths(graph, end, start, "upstream"):
        traced.update(path)
    return traced


def traced_edge_ids(graph: LineageGraphModel, traced: Set[ObjectKey]) -> Set[EdgeKey]:
    return {
        (node, target)
        for node in traced
        for target in graph.successors(node)
        if target in traced
    }


def edge_id(edge: EdgeKey) -> str:
    return f"{edge[0].encode()}-{edge[1].encode()}"


@dataclass(frozen=True)
class TraceResult:
    nodes: FrozenSet[ObjectKey] = frozenset()
    edges: FrozenSet[EdgeKey] = frozenset()
    mode: TraceMode = "none"

    @property
    def node_ids(self) -> Set[str]:
        return {key.encode() for key in self.nodes}

    @property
    def edge_ids(self) -> Set[str]:
        return {edge_id(edge) for edge in self.edges}


def compute_trace(graph: LineageGraphModel, config: Optional[TraceConfig]) -> TraceResult:
    if config is None or not graph.has_node(config.start_node_id):
        return TraceResult()

    if config.end_node_id is not None and graph.has_node(config.end_node_id):
        nodes = find_paths_between(graph, config.start_node_id, config.end_node_id)
        mode: TraceMode = "path"
    else:
        nodes = trace_levels(graph, config.start_node_id, config.upstream_levels, config.downstream_levels)
        mode = "level"

    return TraceResult(
        nodes=frozenset(nodes),
        edges=frozenset(traced_edge_ids(graph, nodes)),
        mode=mode,
    )


@dataclass
class TraceSession:
    """
    Interactive trace state bound to one graph.

    ``start_trace`` enters trace mode and waits for ``apply_trace``;
    ``start_trace_immediate`` does both. A new trace replaces the previous
    one, ``reset_trace`` keeps trace mode on and ``exit_trace_mode`` clears
    everything.
    """

    graph: LineageGraphModel
    is_active: bool = False
    is_filter_applied: bool = False
    config: Optional[TraceConfig] = None
    start_node: Optional[Tuple[ObjectKey, str]] = None
    _result: Optional[TraceResult] = field(default=None, repr=False)

    @property
    def result(self) -> TraceResult:
        if self._result is None:
            self._result = compute_trace(self.graph, self.config)
        return self._result

    @property
    def traced_nodes(self) -> FrozenSet[ObjectKey]:
        return self.result.nodes

    @property
    def traced_edges(self) -> FrozenSet[EdgeKey]:
        return self.result.edges

    def _set_config(self, config: Optional[TraceConfig]) -> None:
        self.config = config
        self._result = None

    def start_trace(self, node_id: KeyLike, node_name: str = "") -> None:
        self.is_active = True
        self.is_filter_applied = False
        self.start_node = (as_key(node_id), node_name)
        self._set_config(None)

    def start_trace_immediate(
        self,
        node_id: KeyLike,
        node_name: str = "",
        *,
        upstream_levels: int = 1,
        downstream_levels: int = 1,
        end_node_id: Optional[KeyLike] = None,
    ) -> TraceResult:
        self.start_trace(node_id, node_name)
        return self.apply_trace(
            upstream_levels=upstream_levels,
            downstream_levels=downstream_levels,
            end_node_id=end_node_id,
        )

    def apply_trace(
        self,
        *,
        upstream_levels: int = 1,
        downstream_levels: int = 1,
        end_node_id: Optional[KeyLike] = None,
    ) -> TraceResult:
        if self.start_node is None:
            logger.debug("apply_trace called without a start node")
            return TraceResult()
        self._set_config(
            TraceConfig(
                start_node_id=self.start_node[0],
                end_node_id=as_key(end_node_id) if end_node_id is not None else None,
                upstream_levels=upstream_levels,
                downstream_levels=downstream_levels,
            )
        )
        self.is_filter_applied = True
        return self.result

    def reset_trace(self) -> None:
        self.start_node = None
        self.is_filter_applied = False
        self._set_config(None)

    def exit_trace_mode(self) -> None:
        self.is_active = False
        self.reset_trace()

    def rebind(self, graph: LineageGraphModel) -> None:
        """Point the session at a rebuilt graph; the current config is re-evaluated."""
        self.graph = graph
        self._result = None
