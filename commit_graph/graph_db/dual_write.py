"""Dual-write graph that mirrors primary writes into a secondary graph store.

The in-memory primary graph is the single source of truth; every write must
succeed there. The secondary store (Neo4j in production) gets the same writes
on a best-effort basis: its failures are logged and counted, never raised.

In batch mode secondary writes are buffered and flushed in bulk, either when
the buffer reaches ``batch_size`` entries or on ``commit_batch()``. A flush
clears its buffer whether or not the writes succeed; nothing is retried.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..storage.errors import SecondaryWriteError
from ..storage.models import GraphNode, GraphRelationship, StoredGraph
from .memory_graph import InMemoryGraph

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


class SecondaryGraphStore(ABC):
    """Write interface the coordinator needs from a secondary store."""

    @abstractmethod
    def add_node(self, node: GraphNode) -> None:
        pass

    @abstractmethod
    def add_relationship(self, relationship: GraphRelationship) -> None:
        pass

    @abstractmethod
    def commit_all(self) -> None:
        """Make previously added items durable."""
        pass

    def discard_pending(self) -> None:
        """Drop items added since the last commit_all, if the store queues them."""

    def clear_snapshot(self) -> None:
        """Remove everything previously written for this store's snapshot."""


@dataclass
class FlushResult:
    """Per-item outcome of sending buffered writes to the secondary store."""

    nodes_written: int = 0
    nodes_failed: int = 0
    relationships_written: int = 0
    relationships_failed: int = 0
    commit_failed: bool = False
    errors: List[SecondaryWriteError] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.nodes_failed + self.relationships_failed + int(self.commit_failed)


class DualWriteGraph:
    """Writes to a primary in-memory graph and, best effort, to a secondary store."""

    def __init__(
        self,
        secondary: Optional[SecondaryGraphStore] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        primary: Optional[InMemoryGraph] = None,
    ):
        """Initialize dual-write graph.

        Args:
            secondary: Optional secondary store; None disables dual writes
            batch_size: Buffered item count that triggers an auto-flush
            primary: Primary graph (a fresh InMemoryGraph by default)
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.primary = primary if primary is not None else InMemoryGraph()
        self.secondary = secondary
        self.batch_size = batch_size

        self._lock = threading.Lock()
        self._batch_mode = False
        self._buffered_nodes: List[GraphNode] = []
        self._buffered_relationships: List[GraphRelationship] = []
        self._stats = {
            "nodes_written_primary": 0,
            "relationships_written_primary": 0,
            "nodes_written_secondary": 0,
            "relationships_written_secondary": 0,
            "secondary_errors": 0,
        }

    @property
    def nodes(self) -> List[GraphNode]:
        """All nodes, read from the primary graph."""
        return self.primary.nodes

    @property
    def relationships(self) -> List[GraphRelationship]:
        """All relationships, read from the primary graph."""
        return self.primary.relationships

    def to_stored_graph(self) -> StoredGraph:
        return self.primary.to_stored_graph()

    def is_secondary_enabled(self) -> bool:
        return self.secondary is not None

    def is_in_batch_mode(self) -> bool:
        return self._batch_mode

    def get_batch_buffer_size(self) -> Dict[str, int]:
        with self._lock:
            return {
                "nodes": len(self._buffered_nodes),
                "relationships": len(self._buffered_relationships),
            }

    def get_dual_write_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def begin_batch(self) -> None:
        """Start buffering secondary writes."""
        with self._lock:
            self._batch_mode = True
            self._buffered_nodes = []
            self._buffered_relationships = []
        logger.info("Batch mode enabled")

    def commit_batch(self) -> FlushResult:
        """Flush buffered writes, commit the secondary store and leave batch mode.

        Returns:
            Outcome of the final flush and commit
        """
        if not self._batch_mode:
            logger.warning("commit_batch called but not in batch mode")
            return FlushResult()

        nodes, relationships = self._take_buffer()
        logger.info(
            f"Committing batch: {len(nodes)} nodes, {len(relationships)} relationships"
        )

        result = self._flush(nodes, relationships)

        if self.secondary is not None:
            try:
                self.secondary.commit_all()
            except Exception as e:
                result.commit_failed = True
                self._record_failure(result, SecondaryWriteError("commit", "batch", e))

        with self._lock:
            self._batch_mode = False

        logger.info(
            f"Batch committed: {result.nodes_written} nodes and "
            f"{result.relationships_written} relationships written, "
            f"{result.failed} secondary failures"
        )
        return result

    def abort_batch(self) -> int:
        """Leave batch mode without sending or committing anything.

        Buffered items are dropped and the secondary store is asked to discard
        what earlier auto-flushes queued but never committed.

        Returns:
            Number of buffered items dropped
        """
        if not self._batch_mode:
            logger.warning("abort_batch called but not in batch mode")
            return 0

        nodes, relationships = self._take_buffer()
        with self._lock:
            self._batch_mode = False

        if self.secondary is not None:
            try:
                self.secondary.discard_pending()
            except Exception as e:
                with self._lock:
                    self._stats["secondary_errors"] += 1
                logger.error(f"Failed to discard pending secondary writes: {e}")

        dropped = len(nodes) + len(relationships)
        logger.warning(f"Batch aborted: {dropped} buffered items dropped")
        return dropped

    def clear_secondary(self) -> bool:
        """Remove the snapshot's existing data from the secondary store.

        Returns:
            True if cleared or there is no secondary store
        """
        if self.secondary is None:
            return True
        try:
            self.secondary.clear_snapshot()
            return True
        except Exception as e:
            with self._lock:
                self._stats["secondary_errors"] += 1
            logger.error(f"Failed to clear secondary snapshot: {e}")
            return False

    def add_node(self, node: GraphNode) -> None:
        """Add a node to the primary graph and mirror it to the secondary store."""
        self.primary.add_node(node)

        with self._lock:
            self._stats["nodes_written_primary"] += 1
            if self._batch_mode:
                self._buffered_nodes.append(node)
                should_flush = self._buffer_full()
            else:
                should_flush = None

        if should_flush is None:
            self._write_node_to_secondary(node)
        elif should_flush:
            self._auto_flush()

    def add_relationship(self, relationship: GraphRelationship) -> None:
        """Add a relationship to the primary graph and mirror it to the secondary store."""
        self.primary.add_relationship(relationship)

        with self._lock:
            self._stats["relationships_written_primary"] += 1
            if self._batch_mode:
                self._buffered_relationships.append(relationship)
                should_flush = self._buffer_full()
            else:
                should_flush = None

        if should_flush is None:
            self._write_relationship_to_secondary(relationship)
        elif should_flush:
            self._auto_flush()

    def _buffer_full(self) -> bool:
        return len(self._buffered_nodes) + len(self._buffered_relationships) >= self.batch_size

    def _take_buffer(self):
        with self._lock:
            nodes = self._buffered_nodes
            relationships = self._buffered_relationships
            self._buffered_nodes = []
            self._buffered_relationships = []
        return nodes, relationships

    def _auto_flush(self) -> FlushResult:
        nodes, relationships = self._take_buffer()
        if not nodes and not relationships:
            return FlushResult()

        logger.info(
            f"Auto-flushing batch: {len(nodes)} nodes, {len(relationships)} relationships"
        )
        return self._flush(nodes, relationships)

    def _flush(
        self, nodes: List[GraphNode], relationships: List[GraphRelationship]
    ) -> FlushResult:
        """Send items to the secondary store one by one, recording each outcome."""
        result = FlushResult()
        if self.secondary is None:
            return result

        for node in nodes:
            try:
                self.secondary.add_node(node)
                result.nodes_written += 1
            except Exception as e:
                result.nodes_failed += 1
                self._record_failure(result, SecondaryWriteError("node", node.id, e))

        for relationship in relationships:
            try:
                self.secondary.add_relationship(relationship)
                result.relationships_written += 1
            except Exception as e:
                result.relationships_failed += 1
                self._record_failure(
                    result, SecondaryWriteError("relationship", relationship.id, e)
                )

        with self._lock:
            self._stats["nodes_written_secondary"] += result.nodes_written
            self._stats["relationships_written_secondary"] += result.relationships_written

        return result

    def _record_failure(self, result: FlushResult, error: SecondaryWriteError) -> None:
        result.errors.append(error)
        with self._lock:
            self._stats["secondary_errors"] += 1
        logger.error(str(error))

    def _write_node_to_secondary(self, node: GraphNode) -> None:
        if self.secondary is None:
            return
        try:
            self.secondary.add_node(node)
        except Exception as e:
            with self._lock:
                self._stats["secondary_errors"] += 1
            logger.warning(str(SecondaryWriteError("node", f"{node.id} ({node.label})", e)))
            return
        with self._lock:
            self._stats["nodes_written_secondary"] += 1

    def _write_relationship_to_secondary(self, relationship: GraphRelationship) -> None:
        if self.secondary is None:
            return
        try:
            self.secondary.add_relationship(relationship)
        except Exception as e:
            with self._lock:
                self._stats["secondary_errors"] += 1
            logger.warning(
                str(
                    SecondaryWriteError(
                        "relationship", f"{relationship.id} ({relationship.type})", e
                    )
                )
            )
            return
        with self._lock:
            self._stats["relationships_written_secondary"] += 1

    def flush_secondary(self) -> bool:
        """Commit pending secondary writes outside batch mode.

        Returns:
            True if the commit succeeded or there is no secondary store
        """
        if self.secondary is None:
            return True
        try:
            self.secondary.commit_all()
            logger.info("Secondary store operations flushed successfully")
            return True
        except Exception as e:
            with self._lock:
                self._stats["secondary_errors"] += 1
            logger.error(f"Failed to flush secondary store: {e}")
            return False

    def log_dual_write_stats(self) -> None:
        """Log dual-write statistics."""
        stats = self.get_dual_write_stats()
        logger.info(
            f"Dual-write statistics: primary {stats['nodes_written_primary']} nodes, "
            f"{stats['relationships_written_primary']} relationships"
        )

        actual_nodes = len(self.primary.nodes)
        if actual_nodes != stats["nodes_written_primary"]:
            logger.info(
                f"Primary graph holds {actual_nodes} nodes after "
                f"{stats['nodes_written_primary']} writes (ids replaced in place)"
            )

        if self.secondary is None:
            logger.info("Secondary store: disabled")
            return

        total_writes = stats["nodes_written_primary"] + stats["relationships_written_primary"]
        secondary_writes = (
            stats["nodes_written_secondary"] + stats["relationships_written_secondary"]
        )
        success_rate = (secondary_writes / total_writes * 100) if total_writes else 0.0
        logger.info(
            f"Secondary store: {stats['nodes_written_secondary']} nodes, "
            f"{stats['relationships_written_secondary']} relationships, "
            f"{stats['secondary_errors']} errors ({success_rate:.1f}% success rate)"
        )
