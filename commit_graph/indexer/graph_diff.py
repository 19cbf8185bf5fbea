"""Structural diff between two stored graph snapshots."""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..storage.models import GraphNode, GraphRelationship, StoredGraph


@dataclass
class GraphDiff:
    """Nodes and relationships that differ between two snapshots."""

    nodes_added: List[GraphNode] = field(default_factory=list)
    nodes_removed: List[GraphNode] = field(default_factory=list)
    relationships_added: List[GraphRelationship] = field(default_factory=list)
    relationships_removed: List[GraphRelationship] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.nodes_added
            or self.nodes_removed
            or self.relationships_added
            or self.relationships_removed
        )

    def summary(self) -> Dict[str, int]:
        return {
            "nodesAdded": len(self.nodes_added),
            "nodesRemoved": len(self.nodes_removed),
            "relationshipsAdded": len(self.relationships_added),
            "relationshipsRemoved": len(self.relationships_removed),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodesAdded": [n.to_dict() for n in self.nodes_added],
            "nodesRemoved": [n.to_dict() for n in self.nodes_removed],
            "relationshipsAdded": [r.to_dict() for r in self.relationships_added],
            "relationshipsRemoved": [r.to_dict() for r in self.relationships_removed],
            "summary": self.summary(),
        }


def compare_graphs(graph_a: StoredGraph, graph_b: StoredGraph) -> GraphDiff:
    """Compute what changed going from graph_a to graph_b.

    Nodes are matched by id. Relationships are matched by their
    (source, type, target) composite key, since relationship ids are not
    stable across ingestions. Parallel edges sharing that key collapse into
    one logical edge.

    Args:
        graph_a: Older snapshot
        graph_b: Newer snapshot

    Returns:
        GraphDiff with added/removed nodes and relationships
    """
    node_ids_a = {node.id for node in graph_a.nodes}
    node_ids_b = {node.id for node in graph_b.nodes}

    rel_keys_a = {rel.composite_key for rel in graph_a.relationships}
    rel_keys_b = {rel.composite_key for rel in graph_b.relationships}

    return GraphDiff(
        nodes_added=[n for n in graph_b.nodes if n.id not in node_ids_a],
        nodes_removed=[n for n in graph_a.nodes if n.id not in node_ids_b],
        relationships_added=[
            r for r in graph_b.relationships if r.composite_key not in rel_keys_a
        ],
        relationships_removed=[
            r for r in graph_a.relationships if r.composite_key not in rel_keys_b
        ],
    )
