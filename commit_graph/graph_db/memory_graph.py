"""In-memory graph used as the authoritative primary store during ingestion."""

from typing import Dict, List, Optional

from ..storage.models import GraphNode, GraphRelationship, StoredGraph


class InMemoryGraph:
    """Ordered, id-indexed collection of nodes and relationships.

    Adding an item whose id is already present replaces it in place, so the
    collection never holds two items with the same id.
    """

    def __init__(self):
        self._nodes: List[GraphNode] = []
        self._relationships: List[GraphRelationship] = []
        self._node_index: Dict[str, int] = {}
        self._relationship_index: Dict[str, int] = {}

    @property
    def nodes(self) -> List[GraphNode]:
        return list(self._nodes)

    @property
    def relationships(self) -> List[GraphRelationship]:
        return list(self._relationships)

    def add_node(self, node: GraphNode) -> None:
        index = self._node_index.get(node.id)
        if index is None:
            self._node_index[node.id] = len(self._nodes)
            self._nodes.append(node)
        else:
            self._nodes[index] = node

    def add_relationship(self, relationship: GraphRelationship) -> None:
        index = self._relationship_index.get(relationship.id)
        if index is None:
            self._relationship_index[relationship.id] = len(self._relationships)
            self._relationships.append(relationship)
        else:
            self._relationships[index] = relationship

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        index = self._node_index.get(node_id)
        return self._nodes[index] if index is not None else None

    def to_stored_graph(self) -> StoredGraph:
        return StoredGraph(nodes=list(self._nodes), relationships=list(self._relationships))

    def __len__(self) -> int:
        return len(self._nodes)
