"""Tests for ingestion sessions."""

import pytest
from conftest import RecordingSecondary, make_graph, make_node

from commit_graph.graph_db.dual_write import DualWriteGraph
from commit_graph.indexer.ingestion import IngestionSession, ingest_graph


class TestIngestionSession:
    """Batch lifecycle around one commit."""

    def test_successful_session_stores_snapshot(self, store):
        secondary = RecordingSecondary()
        graph = DualWriteGraph(secondary=secondary, batch_size=100)

        with IngestionSession(store, graph, "o", "r", "abc1234def", "msg", "2024-01-01") as session:
            assert graph.is_in_batch_mode()
            graph.add_node(make_node("a"))

        assert session.metadata.node_count == 1
        assert session.flush_result.nodes_written == 1
        assert secondary.commits == 1
        assert store.load("o", "r", "abc1234def") is not None

    def test_failed_session_stores_nothing_and_reraises(self, store):
        secondary = RecordingSecondary()
        graph = DualWriteGraph(secondary=secondary, batch_size=100)

        with pytest.raises(RuntimeError):
            with IngestionSession(store, graph, "o", "r", "abc1234def") as session:
                graph.add_node(make_node("a"))
                raise RuntimeError("parser crashed")

        assert session.metadata is None
        assert session.flush_result is None
        assert graph.is_in_batch_mode() is False
        assert store.get_repo_history("o", "r") is None
        assert secondary.nodes == []
        assert secondary.commits == 0

    def test_defaults(self, store):
        session = IngestionSession(store, DualWriteGraph(), "o", "r", "abc1234")

        assert session.commit_message == "No message"
        assert session.commit_date


class TestIngestGraph:
    """Feeding a complete graph through a session."""

    def test_secondary_failures_do_not_block_storage(self, store):
        graph = DualWriteGraph(secondary=RecordingSecondary(fail_nodes=True), batch_size=2)

        metadata = ingest_graph(
            store, graph, "o", "r", "abc1234", make_graph(3, [("n0", "n1")]),
            file_hashes={"a.py": "h"},
        )

        assert metadata.node_count == 3
        assert metadata.relationship_count == 1
        assert graph.get_dual_write_stats()["secondary_errors"] == 3
        assert store.load_file_hashes("o", "r", "abc1234") == {"a.py": "h"}

    def test_nodes_reach_secondary_before_relationships(self, store):
        secondary = RecordingSecondary()
        graph = DualWriteGraph(secondary=secondary, batch_size=1000)

        ingest_graph(store, graph, "o", "r", "abc1234", make_graph(2, [("n0", "n1")]))

        assert [n.id for n in secondary.nodes] == ["n0", "n1"]
        assert [r.id for r in secondary.relationships] == ["r0"]


class TestOverwrite:
    """Re-ingesting a commit that is already stored."""

    def test_existing_commit_clears_secondary_first(self, store):
        ingest_graph(store, DualWriteGraph(), "o", "r", "abc1234", make_graph(5))
        secondary = RecordingSecondary()

        metadata = ingest_graph(
            store, DualWriteGraph(secondary=secondary), "o", "r", "abc1234", make_graph(3)
        )

        assert secondary.clears == 1
        assert len(secondary.nodes) == 3
        assert metadata.node_count == 3

    def test_new_commit_does_not_clear(self, store):
        secondary = RecordingSecondary()

        ingest_graph(store, DualWriteGraph(secondary=secondary), "o", "r", "abc1234", make_graph(1))

        assert secondary.clears == 0

    def test_failed_clear_does_not_block_ingestion(self, store):
        ingest_graph(store, DualWriteGraph(), "o", "r", "abc1234", make_graph(2))
        graph = DualWriteGraph(secondary=RecordingSecondary(fail_clear=True))

        metadata = ingest_graph(store, graph, "o", "r", "abc1234", make_graph(1))

        assert metadata.node_count == 1
        assert graph.get_dual_write_stats()["secondary_errors"] == 1
