import pytest

from commit_graph.graph_db.dual_write import SecondaryGraphStore
from commit_graph.storage.models import GraphNode, GraphRelationship, StoredGraph
from commit_graph.storage.version_store import GraphVersionStore


def make_node(node_id, label="Function", **properties):
    return GraphNode(id=node_id, label=label, properties=properties)


def make_rel(rel_id, source, target, rel_type="CALLS", **properties):
    return GraphRelationship(
        id=rel_id, type=rel_type, source=source, target=target, properties=properties
    )


def make_graph(node_count, relationships=()):
    """Graph with nodes n0..n{count-1} and the given (source, target) CALLS edges."""
    nodes = [make_node(f"n{i}", name=f"func_{i}", startLine=i * 10) for i in range(node_count)]
    rels = [make_rel(f"r{i}", src, dst) for i, (src, dst) in enumerate(relationships)]
    return StoredGraph(nodes=nodes, relationships=rels)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingSecondary(SecondaryGraphStore):
    """Secondary store that records writes and can be told to fail."""

    def __init__(
        self, fail_nodes=False, fail_relationships=False, fail_commit=False, fail_clear=False
    ):
        self.nodes = []
        self.relationships = []
        self.commits = 0
        self.discards = 0
        self.clears = 0
        self.fail_clear = fail_clear
        self.fail_nodes = fail_nodes
        self.fail_relationships = fail_relationships
        self.fail_commit = fail_commit

    def add_node(self, node):
        if self.fail_nodes:
            raise RuntimeError(f"node write refused: {node.id}")
        self.nodes.append(node)

    def add_relationship(self, relationship):
        if self.fail_relationships:
            raise RuntimeError(f"relationship write refused: {relationship.id}")
        self.relationships.append(relationship)

    def commit_all(self):
        if self.fail_commit:
            raise RuntimeError("commit refused")
        self.commits += 1

    def discard_pending(self):
        self.discards += 1

    def clear_snapshot(self):
        if self.fail_clear:
            raise RuntimeError("clear refused")
        self.clears += 1


@pytest.fixture
def store(tmp_path):
    return GraphVersionStore(tmp_path / "data")


@pytest.fixture
def clock():
    return FakeClock()
