"""Neo4j client used as the secondary, query-capable graph store.

Snapshots are mirrored into Neo4j so they can be explored with Cypher. Every
node written through this client carries a ``graph_id`` property naming the
snapshot it belongs to, which lets several snapshots share one database.

The store never decides correctness: the JSON snapshot written by the version
store is authoritative, and failures here are absorbed by the dual-write
coordinator.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from neo4j import GraphDatabase
from neo4j.exceptions import AuthError, ServiceUnavailable

from ..storage.models import GraphNode, GraphRelationship, Properties
from .dual_write import SecondaryGraphStore

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(name: str, kind: str) -> str:
    """Labels and relationship types are interpolated into Cypher, so restrict them."""
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid {kind} for Neo4j: {name!r}")
    return name


def _to_neo4j_properties(properties: Properties) -> Dict[str, Any]:
    """Convert a property map to values Neo4j can store.

    Neo4j properties must be primitives or homogeneous lists of primitives;
    nested maps and mixed lists are stored as JSON strings and nulls are
    dropped.
    """
    converted: Dict[str, Any] = {}
    for key, value in properties.items():
        if value is None:
            continue
        if isinstance(value, dict):
            converted[key] = json.dumps(value)
        elif isinstance(value, list):
            if all(isinstance(v, (bool, int, float, str)) for v in value) and len(
                {type(v) for v in value}
            ) <= 1:
                converted[key] = value
            else:
                converted[key] = json.dumps(value)
        else:
            converted[key] = value
    return converted


class Neo4jGraphStore(SecondaryGraphStore):
    """Secondary graph store backed by Neo4j.

    ``add_node`` and ``add_relationship`` queue writes; ``commit_all`` sends
    the queue to Neo4j in ``UNWIND`` batches.
    """

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        graph_id: Optional[str] = None,
        driver: Any = None,
    ):
        """Initialize Neo4j connection.

        Args:
            uri: Neo4j connection URI (e.g., "bolt://localhost:7687")
            user: Neo4j username
            password: Neo4j password
            graph_id: Snapshot id attached to every node written
            driver: Pre-built driver (mainly for tests)
        """
        self.uri = uri
        self.user = user
        self.graph_id = graph_id
        self._pending_nodes: List[GraphNode] = []
        self._pending_relationships: List[GraphRelationship] = []

        if driver is not None:
            self.driver = driver
            return

        try:
            self.driver = GraphDatabase.driver(uri, auth=(user, password))
            logger.info(f"Connected to Neo4j at {uri}")
        except (ServiceUnavailable, AuthError) as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise

    def close(self):
        """Close the Neo4j connection."""
        if self.driver:
            self.driver.close()
            logger.info("Neo4j connection closed")

    def verify_connectivity(self) -> bool:
        """Verify connection to Neo4j.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            with self.driver.session() as session:
                result = session.run("RETURN 1 AS result")
                return result.single()["result"] == 1
        except Exception as e:
            logger.error(f"Neo4j connectivity check failed: {e}")
            return False

    def create_indexes(self, labels: Optional[List[str]] = None):
        """Create id and graph_id indexes for the given node labels."""
        labels = labels or ["File", "Folder", "Function", "Class", "Method", "Interface"]

        with self.driver.session() as session:
            for label in labels:
                label = _check_identifier(label, "label")
                for prop in ("id", "graph_id"):
                    query = (
                        f"CREATE INDEX {label.lower()}_{prop} IF NOT EXISTS "
                        f"FOR (n:{label}) ON (n.{prop})"
                    )
                    try:
                        session.run(query)
                        logger.debug(f"Created index: {query}")
                    except Exception as e:
                        logger.warning(f"Index creation warning: {e}")

    def add_node(self, node: GraphNode) -> None:
        """Queue a node for the next commit."""
        _check_identifier(node.label, "label")
        self._pending_nodes.append(node)

    def add_relationship(self, relationship: GraphRelationship) -> None:
        """Queue a relationship for the next commit."""
        _check_identifier(relationship.type, "relationship type")
        self._pending_relationships.append(relationship)

    def discard_pending(self) -> None:
        """Forget queued writes without sending them."""
        dropped = self.pending_count()
        self._pending_nodes = []
        self._pending_relationships = []
        if dropped:
            logger.info(f"Discarded {dropped} queued Neo4j writes")

    def clear_snapshot(self) -> None:
        """Delete every node (and its relationships) tagged with this store's graph_id."""
        if not self.graph_id:
            raise ValueError("clear_snapshot requires a graph_id")
        self.clear_graph(self.graph_id)

    def pending_count(self) -> int:
        return len(self._pending_nodes) + len(self._pending_relationships)

    def commit_all(self) -> None:
        """Write all queued nodes, then all queued relationships."""
        nodes = self._pending_nodes
        relationships = self._pending_relationships
        self._pending_nodes = []
        self._pending_relationships = []

        if nodes:
            self.batch_create_nodes(nodes)
        if relationships:
            self.batch_create_relationships(relationships)

        logger.info(
            f"Committed {len(nodes)} nodes and {len(relationships)} relationships to Neo4j"
        )

    def batch_create_nodes(self, nodes: List[GraphNode], batch_size: int = 1000):
        """Create multiple nodes in batches.

        Args:
            nodes: List of GraphNode objects
            batch_size: Number of nodes to create per transaction
        """
        with self.driver.session() as session:
            for i in range(0, len(nodes), batch_size):
                batch = nodes[i:i + batch_size]

                # Group by label for efficient batching
                nodes_by_label: Dict[str, List[Dict[str, Any]]] = {}
                for node in batch:
                    label = _check_identifier(node.label, "label")
                    nodes_by_label.setdefault(label, []).append({
                        "id": node.id,
                        "properties": _to_neo4j_properties(node.properties),
                    })

                for label, label_nodes in nodes_by_label.items():
                    query = f"""
                    UNWIND $nodes AS node
                    MERGE (n:{label} {{id: node.id, graph_id: $graph_id}})
                    SET n += node.properties
                    """
                    session.run(query, nodes=label_nodes, graph_id=self.graph_id)

                logger.debug(f"Created batch of {len(batch)} nodes (batch {i//batch_size + 1})")

    def batch_create_relationships(
        self,
        relationships: List[GraphRelationship],
        batch_size: int = 5000
    ):
        """Create multiple relationships in batches.

        Args:
            relationships: List of GraphRelationship objects
            batch_size: Number of relationships to create per transaction
        """
        with self.driver.session() as session:
            for i in range(0, len(relationships), batch_size):
                batch = relationships[i:i + batch_size]

                # Group by relationship type
                rels_by_type: Dict[str, List[Dict[str, Any]]] = {}
                for rel in batch:
                    rel_type = _check_identifier(rel.type, "relationship type")
                    rels_by_type.setdefault(rel_type, []).append({
                        "id": rel.id,
                        "source_id": rel.source,
                        "target_id": rel.target,
                        "properties": _to_neo4j_properties(rel.properties),
                    })

                for rel_type, type_rels in rels_by_type.items():
                    query = f"""
                    UNWIND $rels AS rel
                    MATCH (source {{id: rel.source_id, graph_id: $graph_id}})
                    MATCH (target {{id: rel.target_id, graph_id: $graph_id}})
                    MERGE (source)-[r:{rel_type} {{id: rel.id}}]->(target)
                    SET r += rel.properties
                    """
                    session.run(query, rels=type_rels, graph_id=self.graph_id)

                logger.debug(
                    f"Created batch of {len(batch)} relationships (batch {i//batch_size + 1})"
                )

    def clear_graph(self, graph_id: Optional[str] = None):
        """Delete the nodes of one snapshot, or everything when no id is given.

        Args:
            graph_id: Snapshot to clear
        """
        with self.driver.session() as session:
            if graph_id:
                session.run("MATCH (n {graph_id: $graph_id}) DETACH DELETE n", graph_id=graph_id)
                logger.info(f"Cleared graph data for snapshot: {graph_id}")
            else:
                session.run("MATCH (n) DETACH DELETE n")
                logger.info("Cleared entire graph database")

    def get_statistics(self) -> Dict[str, Any]:
        """Get graph database statistics.

        Returns:
            Dictionary with node counts, relationship counts, etc.
        """
        with self.driver.session() as session:
            node_counts = session.run(
                "MATCH (n) RETURN labels(n)[0] AS label, count(*) AS count"
            )
            nodes_by_label = {record["label"]: record["count"] for record in node_counts}

            rel_counts = session.run(
                "MATCH ()-[r]->() RETURN type(r) AS type, count(*) AS count"
            )
            relationships_by_type = {record["type"]: record["count"] for record in rel_counts}

            return {
                "nodes_by_label": nodes_by_label,
                "relationships_by_type": relationships_by_type,
            }

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
