"""Tests for the analysis request surface."""

import pytest
from conftest import RecordingSecondary, make_graph

from commit_graph.tools.analysis_tool import AnalysisTool


@pytest.fixture
def tool(store):
    return AnalysisTool(store)


def graph_dict(node_count, relationships=()):
    return make_graph(node_count, relationships).to_dict()


class TestStoreAnalysis:
    """Storing graphs."""

    def test_store_returns_metadata(self, tool):
        result = tool.store_analysis("octocat", "hello-world", "abc1234def", graph_dict(3, [("n0", "n1")]))

        assert result["success"] is True
        assert result["metadata"]["nodeCount"] == 3
        assert result["metadata"]["commitMessage"] == "No message"
        assert result["metadata"]["commitDate"]
        assert "abc1234" in result["message"]

    def test_missing_fields_reported(self, tool):
        result = tool.store_analysis("", "r", None, graph_dict(1))

        assert result["success"] is False
        assert result["error_type"] == "validation_error"
        assert "owner" in result["error"]
        assert "commitSha" in result["error"]

    def test_malformed_graph_is_validation_error(self, tool):
        result = tool.store_analysis("o", "r", "abc1234", {"nodes": [{"id": "a"}]})

        assert result["success"] is False
        assert result["error_type"] == "validation_error"

    def test_empty_graph_is_accepted(self, tool):
        result = tool.store_analysis("o", "r", "abc1234", {})

        assert result["success"] is True
        assert result["metadata"]["nodeCount"] == 0

    def test_secondary_factory_is_used_per_graph(self, store):
        created = {}

        def factory(graph_id):
            created[graph_id] = RecordingSecondary()
            return created[graph_id]

        tool = AnalysisTool(store, secondary_factory=factory)
        tool.store_analysis("o", "r", "abc1234def", graph_dict(2))

        assert list(created) == ["o_r_abc1234"]
        assert len(created["o_r_abc1234"].nodes) == 2

    def test_failing_factory_falls_back_to_primary(self, store):
        def factory(graph_id):
            raise ConnectionError("neo4j down")

        result = AnalysisTool(store, secondary_factory=factory).store_analysis(
            "o", "r", "abc1234", graph_dict(1)
        )

        assert result["success"] is True


class TestQueries:
    """History, load, compare and delete."""

    def test_history(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(1))
        tool.store_analysis("o", "r", "bbbbbbb2", graph_dict(2))

        result = tool.get_history()

        assert result["count"] == 1
        assert len(result["history"][0]["commits"]) == 2

    def test_repo_history_not_found(self, tool):
        result = tool.get_repo_history("o", "missing")

        assert result["success"] is False
        assert result["error_type"] == "not_found"

    def test_load_graph(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(2, [("n0", "n1")]))

        result = tool.load_graph("o", "r", "aaaaaaa1")

        assert len(result["graph"]["nodes"]) == 2
        assert tool.load_graph("o", "r", "nope")["error_type"] == "not_found"

    def test_compare_commits(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(1))
        tool.store_analysis("o", "r", "bbbbbbb2", graph_dict(3))

        result = tool.compare_commits("o", "r", "aaaaaaa1", "bbbbbbb2")

        assert result["comparison"]["summary"]["nodesAdded"] == 2
        assert tool.compare_commits("o", "r", "aaaaaaa1", "zzz")["error_type"] == "not_found"

    def test_delete_graph(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(1))

        assert tool.delete_graph("o", "r", "aaaaaaa1")["success"] is True
        assert tool.delete_graph("o", "r", "aaaaaaa1")["error_type"] == "not_found"

    def test_stats(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(1))

        stats = tool.get_stats()["storage"]

        assert stats["repositories"] == 1
        assert stats["snapshots"] == 1
        assert stats["index_size_bytes"] > 0


class TestCheckForChanges:
    """Re-ingestion decisions against the latest snapshot."""

    def test_unknown_repository_needs_ingestion(self, tool):
        result = tool.check_for_changes("o", "r", {"a.py": "1"})

        assert result["needs_reingestion"] is True
        assert result["base_commit"] is None

    def test_unchanged_files(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(1), file_hashes={"a.py": "1"})

        result = tool.check_for_changes("o", "r", {"a.py": "1"})

        assert result["needs_reingestion"] is False
        assert result["base_commit"] == "aaaaaaa1"

    def test_modified_files(self, tool):
        tool.store_analysis("o", "r", "aaaaaaa1", graph_dict(1), file_hashes={"a.py": "1"})

        result = tool.check_for_changes("o", "r", {"a.py": "2", "b.py": "3"})

        assert result["needs_reingestion"] is True
        assert result["changes"]["modified"] == ["a.py"]
        assert result["changes"]["added"] == ["b.py"]


class TestPathSafety:
    """Coordinates that would escape the data directory."""

    def test_store_rejects_traversal(self, tool, tmp_path):
        result = tool.store_analysis(str(tmp_path / "x"), "y", "/../vic", graph_dict(1))

        assert result["success"] is False
        assert result["error_type"] == "validation_error"
        assert not (tmp_path / "vic").exists()

    def test_load_and_delete_reject_traversal(self, tool):
        assert tool.load_graph("..", "r", "abc1234")["error_type"] == "validation_error"
        assert tool.delete_graph("o", "r/..", "abc1234")["error_type"] == "validation_error"


class TestSecondaryCleanup:
    """Secondary copies follow deletes."""

    def test_delete_clears_secondary_snapshot(self, store):
        created = []

        def factory(graph_id):
            created.append((graph_id, RecordingSecondary()))
            return created[-1][1]

        tool = AnalysisTool(store, secondary_factory=factory)
        tool.store_analysis("o", "r", "abc1234def", graph_dict(2))

        result = tool.delete_graph("o", "r", "abc1234def")

        assert result["success"] is True
        assert result["secondary_cleared"] is True
        assert created[-1][0] == "o_r_abc1234"
        assert created[-1][1].clears == 1

    def test_failed_secondary_clear_still_deletes(self, store):
        tool = AnalysisTool(
            store, secondary_factory=lambda graph_id: RecordingSecondary(fail_clear=True)
        )
        tool.store_analysis("o", "r", "abc1234", graph_dict(1))

        result = tool.delete_graph("o", "r", "abc1234")

        assert result["success"] is True
        assert result["secondary_cleared"] is False
        assert store.get_repo_history("o", "r") is None
