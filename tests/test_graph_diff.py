"""Tests for snapshot diffing."""

from conftest import make_graph, make_node, make_rel

from commit_graph.indexer.graph_diff import compare_graphs
from commit_graph.storage.models import StoredGraph


class TestCompareGraphs:
    """Node and relationship set differences."""

    def test_graph_compared_with_itself_is_empty(self):
        graph = make_graph(4, [("n0", "n1"), ("n2", "n3")])

        diff = compare_graphs(graph, graph)

        assert diff.is_empty()
        assert diff.summary() == {
            "nodesAdded": 0,
            "nodesRemoved": 0,
            "relationshipsAdded": 0,
            "relationshipsRemoved": 0,
        }

    def test_added_and_removed_nodes(self):
        old = make_graph(3)
        new = StoredGraph(nodes=[make_node("n1"), make_node("n2"), make_node("n9")])

        diff = compare_graphs(old, new)

        assert [n.id for n in diff.nodes_added] == ["n9"]
        assert [n.id for n in diff.nodes_removed] == ["n0"]

    def test_swapping_arguments_swaps_added_and_removed(self):
        a = make_graph(2, [("n0", "n1")])
        b = make_graph(3, [("n1", "n2")])

        forward = compare_graphs(a, b)
        backward = compare_graphs(b, a)

        assert [n.id for n in forward.nodes_added] == [n.id for n in backward.nodes_removed]
        assert [n.id for n in forward.nodes_removed] == [n.id for n in backward.nodes_added]
        assert [r.composite_key for r in forward.relationships_added] == [
            r.composite_key for r in backward.relationships_removed
        ]

    def test_relationship_ids_do_not_matter(self):
        old = StoredGraph(relationships=[make_rel("r1", "a", "b")])
        new = StoredGraph(relationships=[make_rel("different-id", "a", "b")])

        assert compare_graphs(old, new).is_empty()

    def test_relationship_type_change_is_remove_plus_add(self):
        old = StoredGraph(relationships=[make_rel("r1", "a", "b", rel_type="CALLS")])
        new = StoredGraph(relationships=[make_rel("r1", "a", "b", rel_type="IMPORTS")])

        diff = compare_graphs(old, new)

        assert [r.type for r in diff.relationships_added] == ["IMPORTS"]
        assert [r.type for r in diff.relationships_removed] == ["CALLS"]

    def test_property_changes_are_not_reported(self):
        old = StoredGraph(nodes=[make_node("a", name="before")])
        new = StoredGraph(nodes=[make_node("a", name="after")])

        assert compare_graphs(old, new).is_empty()

    def test_to_dict_includes_summary(self):
        diff = compare_graphs(make_graph(1), make_graph(2, [("n0", "n1")]))

        data = diff.to_dict()

        assert data["nodesAdded"][0]["id"] == "n1"
        assert data["relationshipsAdded"][0]["source"] == "n0"
        assert data["summary"]["nodesAdded"] == 1
        assert data["summary"]["relationshipsAdded"] == 1
