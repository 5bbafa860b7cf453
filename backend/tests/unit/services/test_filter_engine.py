from typing import List

import pytest

from datalineage.config.settings import ModelSettings
from datalineage.models.cache import FilterCacheEntry
from datalineage.models.filters import ClassificationRule, FilterAction, FilterCommand, FilterState
from datalineage.models.lineage import ExternalRefType, LineageObject, ObjectType
from datalineage.services.filter_engine import FilterEngine
from datalineage.services.graph_model import LineageGraphModel


def _names(nodes: List[LineageObject]):
    return {node.name for node in nodes}


@pytest.fixture
def engine(make_node) -> FilterEngine:
    nodes = [
        make_node(1, "DimCustomer", schema="sales", inputs=[4], outputs=[2]),
        make_node(2, "FactOrders", schema="finance", object_type=ObjectType.VIEW),
        make_node(3, "orders_bak", schema="sales"),
        make_node(4, "/landing/customers.csv", external_ref_type=ExternalRefType.FILE),
        make_node(5, "https://reports.example.com", external_ref_type=ExternalRefType.LINK),
    ]
    return FilterEngine(LineageGraphModel(nodes))


ALL = {"DimCustomer", "FactOrders", "orders_bak", "/landing/customers.csv", "https://reports.example.com"}


@pytest.mark.unit
class TestFacets:
    def test_available_values(self, engine):
        assert engine.available_schemas == ("finance", "sales")
        assert engine.available_object_types == (ObjectType.TABLE, ObjectType.VIEW)
        assert engine.available_classifications == ("Dimension", "Fact", "Other")
        assert engine.available_external_types == (ExternalRefType.FILE, ExternalRefType.LINK)

    def test_default_state_shows_everything(self, engine):
        assert _names(engine.apply()) == ALL

    def test_classification_of(self, engine):
        node = engine.graph.get_node("1_3")
        assert engine.classification_of(node.key) == "Other"


@pytest.mark.unit
class TestStages:
    def test_schema_filter_exempts_externals(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_SCHEMAS, ["sales"]))
        assert _names(engine.apply()) == ALL - {"FactOrders"}

    def test_no_schemas_selected_leaves_externals(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SELECT_NO_SCHEMAS))
        assert _names(engine.apply()) == {"/landing/customers.csv", "https://reports.example.com"}

    def test_object_type_filter(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_OBJECT_TYPES, ["View"]))
        assert _names(engine.apply()) == {"FactOrders", "/landing/customers.csv", "https://reports.example.com"}

    def test_classification_filter(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_CLASSIFICATIONS, ["Dimension"]))
        assert _names(engine.apply()) == {"DimCustomer", "/landing/customers.csv", "https://reports.example.com"}

    def test_empty_classification_selection_shows_all(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SELECT_NO_CLASSIFICATIONS))
        assert _names(engine.apply()) == ALL

    def test_external_type_filter(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SELECT_NO_EXTERNAL_TYPES))
        assert _names(engine.apply()) == {"DimCustomer", "FactOrders", "orders_bak"}

        engine.dispatch(FilterCommand.user(FilterAction.SET_EXTERNAL_TYPES, ["FILE"]))
        assert _names(engine.apply()) == {"DimCustomer", "FactOrders", "orders_bak", "/landing/customers.csv"}

    def test_exclude_patterns(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_EXCLUDE_PATTERNS, ["%_bak", " "]))
        assert engine.state.exclude_patterns == ("%_bak",)
        assert "orders_bak" not in _names(engine.apply())

    def test_exclude_patterns_match_qualified_name(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_EXCLUDE_PATTERNS, ["finance.%"]))
        assert "FactOrders" not in _names(engine.apply())

    def test_hide_isolated(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_HIDE_ISOLATED, True))
        assert _names(engine.apply()) == {"DimCustomer", "FactOrders", "/landing/customers.csv"}

    def test_hide_isolated_uses_filtered_neighbors(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_SCHEMAS, ["finance"]))
        engine.dispatch(FilterCommand.user(FilterAction.SET_HIDE_ISOLATED, True))
        assert engine.apply() == []

    def test_filtering_is_idempotent(self, engine):
        state = engine.reduce(engine.state, FilterCommand.user(FilterAction.SET_SCHEMAS, ["sales"]))
        state = engine.reduce(state, FilterCommand.user(FilterAction.SET_EXCLUDE_PATTERNS, ["%_bak"]))
        state = engine.reduce(state, FilterCommand.user(FilterAction.SET_HIDE_ISOLATED, True))

        once = engine.apply(state)
        assert _names(once) == {"DimCustomer", "/landing/customers.csv"}
        assert engine.apply(state, nodes=once) == once


@pytest.mark.unit
def test_schema_selection_hides_other_schema(make_node):
    a = make_node(1, "A", schema="s1", outputs=[2])
    b = make_node(2, "B", schema="s2")
    engine = FilterEngine(LineageGraphModel([a, b]))

    engine.dispatch(FilterCommand.user(FilterAction.SET_SCHEMAS, ["s1"]))

    assert engine.apply() == [a]
    assert engine.visible_keys() == {a.key}


@pytest.mark.unit
class TestFocusSchema:
    def test_focus_selects_neighbor_schemas_and_restricts(self, engine):
        state = engine.dispatch(FilterCommand.user(FilterAction.SET_FOCUS_SCHEMA, "finance"))

        assert state.focus_schema == "finance"
        assert state.selected_schemas == frozenset({"finance", "sales"})
        assert _names(engine.apply()) == {"FactOrders", "DimCustomer"}

    def test_clearing_focus_keeps_selection(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_FOCUS_SCHEMA, "finance"))
        state = engine.dispatch(FilterCommand.user(FilterAction.SET_FOCUS_SCHEMA, None))

        assert state.focus_schema is None
        assert state.selected_schemas == frozenset({"finance", "sales"})

    def test_manual_schema_change_clears_focus(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SET_FOCUS_SCHEMA, "finance"))
        state = engine.dispatch(FilterCommand.user(FilterAction.SET_SCHEMAS, ["sales"]))
        assert state.focus_schema is None


@pytest.mark.unit
class TestCommands:
    def test_only_user_actions_reach_subscribers(self, engine):
        saved = []
        unsubscribe = engine.subscribe(saved.append)

        engine.dispatch(FilterCommand.reload(FilterAction.SET_HIDE_ISOLATED, True))
        assert saved == []

        engine.dispatch(FilterCommand.user(FilterAction.SET_HIDE_ISOLATED, False))
        assert len(saved) == 1
        assert saved[0].hide_isolated is False

        unsubscribe()
        engine.dispatch(FilterCommand.user(FilterAction.RESET))
        assert len(saved) == 1

    def test_restore_intersects_saved_selections(self, engine):
        saved = FilterCacheEntry(
            selected_schemas=["sales", "archive"],
            selected_object_types=["View"],
            selected_classifications=["Gone"],
            selected_external_types=[],
            focus_schema="archive",
            hide_isolated=True,
        )

        state = engine.dispatch(FilterCommand.reload(FilterAction.RESTORE, saved))

        assert state.selected_schemas == frozenset({"sales"})
        assert state.selected_object_types == frozenset({ObjectType.VIEW})
        assert state.selected_classifications == frozenset(engine.available_classifications)
        assert state.selected_external_types == frozenset(engine.available_external_types)
        assert state.focus_schema is None
        assert state.hide_isolated is True

    def test_restore_nothing_is_default(self, engine):
        state = engine.dispatch(FilterCommand.reload(FilterAction.RESTORE, None))
        assert state == engine.default_state()

    def test_reset(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SELECT_NO_SCHEMAS))
        assert engine.dispatch(FilterCommand.user(FilterAction.RESET)) == engine.default_state()

    def test_select_all(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SELECT_NO_OBJECT_TYPES))
        state = engine.dispatch(FilterCommand.user(FilterAction.SELECT_ALL_OBJECT_TYPES))
        assert state.selected_object_types == frozenset(engine.available_object_types)

    def test_state_is_immutable(self, engine):
        before = engine.state
        engine.dispatch(FilterCommand.user(FilterAction.SET_HIDE_ISOLATED, True))
        assert before.hide_isolated is False
        assert isinstance(before, FilterState)


@pytest.mark.unit
class TestSearch:
    def test_requires_two_characters(self, engine):
        assert engine.search("d") == []

    def test_matches_name_and_schema(self, engine):
        assert _names(engine.search("cust")) == {"DimCustomer", "/landing/customers.csv"}
        assert _names(engine.search("sales")) == {"DimCustomer", "orders_bak"}

    def test_only_visible_nodes(self, engine):
        engine.dispatch(FilterCommand.user(FilterAction.SELECT_NO_EXTERNAL_TYPES))
        assert _names(engine.search("cust")) == {"DimCustomer"}

    def test_limit(self, engine):
        assert len(engine.search("or", limit=1)) == 1


@pytest.mark.unit
def test_custom_rules_are_normalized(make_node):
    engine = FilterEngine(
        LineageGraphModel([make_node(1, "stg_orders")]),
        rules=[ClassificationRule(name="Staging", patterns=("stg",))],
        exclude_patterns=["%_tmp", ""],
    )

    assert engine.available_classifications == ("Staging", "Other")
    assert engine.classification_of(make_node(1).key) == "Staging"
    assert engine.state.exclude_patterns == ("%_tmp",)


@pytest.mark.unit
def test_from_settings(make_node):
    model = ModelSettings(
        classification_rules=[ClassificationRule(name="Fact", patterns=("fact",))],
        exclude_patterns=["%_bak"],
    )

    engine = FilterEngine.from_settings(LineageGraphModel([make_node(1, "orders_bak")]), model)

    assert engine.available_classifications == ("Fact", "Other")
    assert engine.apply() == []
