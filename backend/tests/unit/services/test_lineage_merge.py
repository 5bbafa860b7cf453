import pytest

from datalineage.exceptions import GraphQLError
from datalineage.models.lineage import EdgeRecord, ObjectKey, ObjectRecord
from datalineage.services.lineage_service import merge_lineage_records, parse_records


def _object(object_id: int, object_type: str = "Table", ref_type: int = 0, source_id: int = 1) -> ObjectRecord:
    return ObjectRecord(
        source_id=source_id,
        object_id=object_id,
        schema_name="dbo",
        object_name=f"obj_{object_id}",
        object_type=object_type,
        ref_type=ref_type,
    )


def _edge(source: int, target: int, *, bidirectional: bool = False, source_id=1) -> EdgeRecord:
    return EdgeRecord(
        source_id=source_id,
        source_object_id=source,
        target_object_id=target,
        is_bidirectional=bidirectional,
    )


@pytest.mark.unit
class TestMergeLineageRecords:
    def test_no_node_lists_itself(self):
        nodes = merge_lineage_records(
            [_object(1), _object(2)],
            [_edge(1, 1), _edge(1, 2), _edge(2, 2)],
        )

        for node in nodes:
            assert node.key not in node.inputs
            assert node.key not in node.outputs
        assert nodes[0].outputs == (ObjectKey(1, 2),)

    def test_duplicate_edges_collapse(self):
        nodes = merge_lineage_records([_object(1), _object(2)], [_edge(1, 2), _edge(1, 2)])
        assert nodes[1].inputs == (ObjectKey(1, 1),)

    def test_bidirectional_rows(self):
        nodes = merge_lineage_records(
            [_object(1, "Stored Procedure"), _object(2)],
            [_edge(1, 2, bidirectional=True), _edge(2, 1, bidirectional=True)],
        )
        proc, table = nodes
        assert proc.bidirectional_with == (ObjectKey(1, 2),)
        assert table.bidirectional_with == (ObjectKey(1, 1),)
        assert proc.inputs == (ObjectKey(1, 2),)
        assert proc.outputs == (ObjectKey(1, 2),)

    def test_edges_without_source_use_requested_source(self):
        nodes = merge_lineage_records([_object(1), _object(2)], [_edge(1, 2, source_id=None)], source_id=1)
        assert nodes[0].outputs == (ObjectKey(1, 2),)

        orphaned = merge_lineage_records([_object(1), _object(2)], [_edge(1, 2, source_id=None)])
        assert orphaned[0].outputs == ()

    def test_unknown_object_type_skipped_unless_external(self):
        nodes = merge_lineage_records([_object(1, "Sequence"), _object(2, "Sequence", ref_type=3)], [])

        assert [node.key for node in nodes] == [ObjectKey(1, 2)]
        assert nodes[0].is_external

    def test_duplicate_objects_keep_first(self):
        nodes = merge_lineage_records([_object(1, "View"), _object(1, "Table")], [])
        assert len(nodes) == 1
        assert nodes[0].object_type.value == "View"


@pytest.mark.unit
def test_parse_records_reports_shape_errors_as_graphql_errors():
    with pytest.raises(GraphQLError, match="vw_objects"):
        parse_records(ObjectRecord, [{"object_id": 1}], "vw_objects")
