"""Tests for graph snapshot data models."""

import pytest

from commit_graph.storage.errors import SerializationError
from commit_graph.storage.models import (
    AnalysisHistoryEntry,
    GraphMetadata,
    GraphNode,
    GraphRelationship,
    StoredGraph,
    make_graph_id,
    make_repo_full_name,
    short_sha,
    validate_properties,
)


def make_metadata(commit_sha="abc1234def", commit_number=1):
    return GraphMetadata(
        id=make_graph_id("o", "r", commit_sha),
        repo_owner="o",
        repo_name="r",
        commit_sha=commit_sha,
        commit_number=commit_number,
        commit_message="msg",
        commit_date="2024-01-01T00:00:00Z",
        created_at="2024-01-02T00:00:00Z",
        node_count=3,
        relationship_count=2,
        storage_locator="/data/graphs/o_r_abc1234",
    )


class TestIdentifiers:
    """Graph id and repository name helpers."""

    def test_short_sha_takes_seven_characters(self):
        assert short_sha("abc1234def5678") == "abc1234"
        assert short_sha("abc") == "abc"

    def test_graph_id_format(self):
        assert make_graph_id("octocat", "hello-world", "abc1234def") == "octocat_hello-world_abc1234"

    def test_repo_full_name(self):
        assert make_repo_full_name("octocat", "hello-world") == "octocat/hello-world"


class TestProperties:
    """Property map validation."""

    def test_accepts_nested_values_and_keeps_order(self):
        props = {"b": 1, "a": [1.5, "x", None, True], "c": {"d": {"e": []}}}

        validated = validate_properties(props, "n1")

        assert validated == props
        assert list(validated) == ["b", "a", "c"]

    def test_none_is_empty(self):
        assert validate_properties(None) == {}

    def test_rejects_unsupported_value(self):
        with pytest.raises(SerializationError, match="n1.when"):
            validate_properties({"when": object()}, "n1")

    def test_rejects_non_mapping(self):
        with pytest.raises(SerializationError):
            validate_properties(["not", "a", "map"], "n1")


class TestGraphSerialization:
    """Node, relationship and graph dict conversion."""

    def test_node_from_dict(self):
        node = GraphNode.from_dict(
            {"id": "n1", "label": "Function", "properties": {"name": "main"}}
        )

        assert node == GraphNode(id="n1", label="Function", properties={"name": "main"})
        assert node.to_dict()["properties"] == {"name": "main"}

    def test_node_without_properties(self):
        node = GraphNode.from_dict({"id": "n1", "label": "File"})
        assert node.properties == {}

    def test_node_missing_label_raises(self):
        with pytest.raises(SerializationError, match="label"):
            GraphNode.from_dict({"id": "n1"})

    def test_relationship_composite_key(self):
        rel = GraphRelationship(id="r1", type="CALLS", source="a", target="b")
        assert rel.composite_key == "a|CALLS|b"

    def test_relationship_missing_target_raises(self):
        with pytest.raises(SerializationError, match="target"):
            GraphRelationship.from_dict({"id": "r1", "type": "CALLS", "source": "a"})

    def test_stored_graph_from_dict(self):
        graph = StoredGraph.from_dict(
            {
                "nodes": [{"id": "a", "label": "File"}, {"id": "b", "label": "Function"}],
                "relationships": [
                    {"id": "r1", "type": "DEFINES", "source": "a", "target": "b"}
                ],
            }
        )

        assert [n.id for n in graph.nodes] == ["a", "b"]
        assert graph.relationships[0].type == "DEFINES"

    def test_stored_graph_rejects_non_object(self):
        with pytest.raises(SerializationError):
            StoredGraph.from_dict([])

    def test_stored_graph_rejects_non_list_nodes(self):
        with pytest.raises(SerializationError):
            StoredGraph.from_dict({"nodes": {"id": "a"}})

    def test_empty_graph(self):
        graph = StoredGraph.from_dict({})
        assert graph.nodes == []
        assert graph.relationships == []


class TestMetadata:
    """Index record conversion."""

    def test_metadata_uses_camel_case_keys(self):
        data = make_metadata().to_dict()

        assert data["commitSha"] == "abc1234def"
        assert data["repoOwner"] == "o"
        assert data["nodeCount"] == 3
        assert data["storageLocator"] == "/data/graphs/o_r_abc1234"
        assert GraphMetadata.from_dict(data) == make_metadata()

    def test_metadata_missing_field_raises(self):
        data = make_metadata().to_dict()
        del data["commitSha"]

        with pytest.raises(SerializationError):
            GraphMetadata.from_dict(data)

    def test_history_entry_lookup(self):
        entry = AnalysisHistoryEntry(
            id="o/r",
            repo_full_name="o/r",
            commits=[make_metadata("aaaaaaa1", 1), make_metadata("bbbbbbb2", 2)],
        )

        assert entry.find_commit_index("bbbbbbb2") == 1
        assert entry.find_commit_index("missing") == -1
        assert entry.get_commit("aaaaaaa1").commit_number == 1
        assert entry.get_commit("missing") is None

    def test_history_entry_from_dict(self):
        entry = AnalysisHistoryEntry.from_dict(
            {
                "id": "o/r",
                "repoFullName": "o/r",
                "commits": [make_metadata().to_dict()],
                "lastUpdated": "2024-01-02T00:00:00Z",
            }
        )

        assert entry.commits == [make_metadata()]
        assert entry.last_updated == "2024-01-02T00:00:00Z"
