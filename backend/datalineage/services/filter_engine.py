"""
Multi-facet filtering of the lineage graph.

Stages, each applied to the previous stage's output:
1. schema             (external objects exempt; only when not every schema is selected)
2. object type        (external objects exempt; only when not every type is selected)
3. classification     (external objects exempt; only when some but not all are selected)
4. external ref type  (external objects only; an empty selection hides them all)
5. exclude patterns   (SQL LIKE, matched against ``schema.name`` and ``name``)
6. isolated removal   (when ``hide_isolated``; a node needs a neighbor still present)
7. focus schema       (focus schema nodes plus their direct neighbors)

State changes arrive as FilterCommand objects. Only commands with
``CommandOrigin.USER_ACTION`` reach subscribers, which is where persistence
hooks in.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from datalineage.models.cache import FilterCacheEntry
from datalineage.models.filters import (
    ClassificationRule,
    CommandOrigin,
    FilterAction,
    FilterCommand,
    FilterState,
)
from datalineage.models.lineage import (
    ALL_EXTERNAL_TYPES,
    ALL_OBJECT_TYPES,
    ExternalRefType,
    LineageObject,
    ObjectKey,
    ObjectType,
)
from datalineage.services.graph_model import LineageGraphModel
from datalineage.utils.patterns import classify_object, matches_any, normalize_rules

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2
MAX_SEARCH_RESULTS = 10

FilterSubscriber = Callable[[FilterState], None]


def _restore_selection(saved: Sequence, available: Tuple) -> FrozenSet:
    """Saved values still present in the data, or everything when none survive."""
    valid = [value for value in saved if value in available]
    return frozenset(valid) if valid else frozenset(available)


class FilterEngine:
    def __init__(
        self,
        graph: LineageGraphModel,
        rules: Optional[Sequence[ClassificationRule]] = None,
        exclude_patterns: Iterable[str] = (),
    ) -> None:
        self.graph = graph
        self.rules: List[ClassificationRule] = normalize_rules(rules)
        self.default_exclude_patterns: Tuple[str, ...] = tuple(p for p in exclude_patterns if p)

        nodes = graph.nodes()
        self.classifications: Dict[ObjectKey, str] = {
            node.key: classify_object(node.name, self.rules).name for node in nodes
        }
        self.available_schemas: Tuple[str, ...] = tuple(
            sorted({node.schema_name for node in nodes if not node.is_external and node.schema_name.strip()})
        )
        present_types = {node.object_type for node in nodes}
        self.available_object_types: Tuple[ObjectType, ...] = tuple(
            t for t in ALL_OBJECT_TYPES if t in present_types
        )
        self.available_classifications: Tuple[str, ...] = tuple(rule.name for rule in self.rules)
        present_external = {node.external_ref_type for node in nodes if node.is_external and node.external_ref_type}
        self.available_external_types: Tuple[ExternalRefType, ...] = tuple(
            t for t in ALL_EXTERNAL_TYPES if t in present_external
        )

        self.state: FilterState = self.default_state()
        self._subscribers: List[FilterSubscriber] = []

    @classmethod
    def from_settings(cls, graph: LineageGraphModel, model_settings) -> "FilterEngine":
        """Engine using ``ModelSettings`` rules and exclude patterns."""
        return cls(graph, model_settings.classification_rules, model_settings.exclude_patterns)

    # ------------------------------------------------------------------
    # State construction
    # ------------------------------------------------------------------

    def default_state(self) -> FilterState:
        return FilterState(
            selected_schemas=frozenset(self.available_schemas),
            selected_object_types=frozenset(self.available_object_types),
            selected_classifications=frozenset(self.available_classifications),
            selected_external_types=frozenset(self.available_external_types),
            exclude_patterns=self.default_exclude_patterns,
            hide_isolated=False,
            focus_schema=None,
        )

    def initial_state(self, saved: Optional[FilterCacheEntry]) -> FilterState:
        """Saved selections intersected with what the data offers."""
        if saved is None:
            return self.default_state()

        object_types = []
        for value in saved.selected_object_types:
            try:
                object_types.append(ObjectType(value))
            except ValueError:
                continue

        focus = saved.focus_schema if saved.focus_schema in self.available_schemas else None
        return FilterState(
            selected_schemas=_restore_selection(saved.selected_schemas, self.available_schemas),
            selected_object_types=_restore_selection(object_types, self.available_object_types),
            selected_classifications=_restore_selection(saved.selected_classifications, self.available_classifications),
            selected_external_types=_restore_selection(saved.selected_external_types, self.available_external_types),
            exclude_patterns=self.default_exclude_patterns,
            hide_isolated=saved.hide_isolated,
            focus_schema=focus,
        )

    def classification_of(self, key: ObjectKey) -> Optional[str]:
        return self.classifications.get(key)

    def focus_schema_selection(self, schema: str) -> FrozenSet[str]:
        """The focus schema plus every schema one direct edge away from it."""
        selected = {schema}
        for node in self.graph.nodes():
            if node.schema_name != schema:
                continue
            for neighbor_key in self.graph.neighbors(node.key):
                neighbor = self.graph.get_node(neighbor_key)
                if neighbor is not None and neighbor.schema_name:
                    selected.add(neighbor.schema_name)
        return frozenset(selected)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def subscribe(self, callback: FilterSubscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def dispatch(self, command: FilterCommand) -> FilterState:
        self.state = self.reduce(self.state, command)
        logger.debug(f"Filter command {command.action.value} from {command.origin.value}")
        if command.origin == CommandOrigin.USER_ACTION:
            for subscriber in list(self._subscribers):
                subscriber(self.state)
        return self.state

    def reduce(self, state: FilterState, command: FilterCommand) -> FilterState:
        action, value = command.action, command.value

        if action == FilterAction.SET_SCHEMAS:
            return state.model_copy(update={"selected_schemas": frozenset(value or ()), "focus_schema": None})
        if action == FilterAction.SELECT_ALL_SCHEMAS:
            return state.model_copy(update={"selected_schemas": frozenset(self.available_schemas)})
        if action == FilterAction.SELECT_NO_SCHEMAS:
            return state.model_copy(update={"selected_schemas": frozenset(), "focus_schema": None})

        if action == FilterAction.SET_OBJECT_TYPES:
            types = frozenset(ObjectType(v) for v in (value or ()))
            return state.model_copy(update={"selected_object_types": types})
        if action == FilterAction.SELECT_ALL_OBJECT_TYPES:
            return state.model_copy(update={"selected_object_types": frozenset(self.available_object_types)})
        if action == FilterAction.SELECT_NO_OBJECT_TYPES:
            return state.model_copy(update={"selected_object_types": frozenset()})

        if action == FilterAction.SET_CLASSIFICATIONS:
            return state.model_copy(update={"selected_classifications": frozenset(value or ())})
        if action == FilterAction.SELECT_ALL_CLASSIFICATIONS:
            return state.model_copy(update={"selected_classifications": frozenset(self.available_classifications)})
        if action == FilterAction.SELECT_NO_CLASSIFICATIONS:
            return state.model_copy(update={"selected_classifications": frozenset()})

        if action == FilterAction.SET_EXTERNAL_TYPES:
            types = frozenset(ExternalRefType(v) for v in (value or ()))
            return state.model_copy(update={"selected_external_types": types})
        if action == FilterAction.SELECT_ALL_EXTERNAL_TYPES:
            return state.model_copy(update={"selected_external_types": frozenset(self.available_external_types)})
        if action == FilterAction.SELECT_NO_EXTERNAL_TYPES:
            return state.model_copy(update={"selected_external_types": frozenset()})

        if action == FilterAction.SET_EXCLUDE_PATTERNS:
            patterns = tuple(p.strip() for p in (value or ()) if p and p.strip())
            return state.model_copy(update={"exclude_patterns": patterns})
        if action == FilterAction.SET_HIDE_ISOLATED:
            return state.model_copy(update={"hide_isolated": bool(value)})

        if action == FilterAction.SET_FOCUS_SCHEMA:
            if not value:
                # Clearing focus keeps the current schema selection.
                return state.model_copy(update={"focus_schema": None})
            return state.model_copy(
                update={"selected_schemas": self.focus_schema_selection(value), "focus_schema": value}
            )

        if action == FilterAction.RESET:
            return self.default_state()
        if action == FilterAction.RESTORE:
            return self.initial_state(value)

        raise ValueError(f"Unsupported filter action: {action}")

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def apply(
        self,
        state: Optional[FilterState] = None,
        nodes: Optional[Iterable[LineageObject]] = None,
    ) -> List[LineageObject]:
        """Visible nodes for ``state`` (the engine's current state by default)."""
        state = state or self.state
        result = list(nodes) if nodes is not None else self.graph.nodes()

        if set(self.available_schemas) - state.selected_schemas:
            result = [n for n in result if n.is_external or n.schema_name in state.selected_schemas]

        if set(self.available_object_types) - state.selected_object_types:
            result = [n for n in result if n.is_external or n.object_type in state.selected_object_types]

        selected_classes = state.selected_classifications
        if self.available_classifications and selected_classes and set(self.available_classifications) - selected_classes:
            result = [
                n for n in result
                if n.is_external or self.classifications.get(n.key) in selected_classes
            ]

        if self.available_external_types:
            if not state.selected_external_types:
                result = [n for n in result if not n.is_external]
            elif set(self.available_external_types) - state.selected_external_types:
                result = [
                    n for n in result
                    if not n.is_external or n.external_ref_type in state.selected_external_types
                ]

        if state.exclude_patterns:
            result = [
                n for n in result
                if not matches_any((n.qualified_name, n.name), state.exclude_patterns)
            ]

        if state.hide_isolated:
            present: Set[ObjectKey] = {n.key for n in result}
            result = [
                n for n in result
                if any(neighbor in present for neighbor in self.graph.neighbors(n.key))
            ]

        if state.focus_schema:
            result = self._restrict_to_focus(result, state.focus_schema)

        return result

    def _restrict_to_focus(self, nodes: List[LineageObject], focus_schema: str) -> List[LineageObject]:
        focus_keys = {n.key for n in nodes if n.schema_name == focus_schema}
        neighbor_keys: Set[ObjectKey] = set()
        for key in focus_keys:
            neighbor_keys.update(self.graph.neighbors(key))
        return [n for n in nodes if n.key in focus_keys or n.key in neighbor_keys]

    def visible_keys(self, state: Optional[FilterState] = None) -> Set[ObjectKey]:
        return {node.key for node in self.apply(state)}

    def search(
        self,
        term: str,
        state: Optional[FilterState] = None,
        limit: int = MAX_SEARCH_RESULTS,
    ) -> List[LineageObject]:
        """
        Case-insensitive substring search over visible nodes.

        External objects match on name only (their name is the path or URL).
        """
        term = (term or "").strip().lower()
        if len(term) < MIN_SEARCH_LENGTH:
            return []

        matches = []
        for node in self.apply(state):
            if node.is_external:
                hit = term in node.name.lower()
            else:
                hit = (
                    term in node.name.lower()
                    or term in node.schema_name.lower()
                    or term in node.qualified_name.lower()
                )
            if hit:
                matches.append(node)
                if len(matches) >= limit:
                    break
        return matches
