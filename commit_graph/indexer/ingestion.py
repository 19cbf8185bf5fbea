"""Ingestion sessions that turn a finished graph into a stored snapshot."""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from ..graph_db.dual_write import DualWriteGraph, FlushResult
from ..storage.models import GraphMetadata, StoredGraph
from ..storage.version_store import GraphVersionStore

logger = logging.getLogger(__name__)


class IngestionSession:
    """Context manager for writing one commit's graph.

    Entering switches the dual-write graph into batch mode, first clearing
    the secondary copy when the commit is already stored. Leaving without an
    error commits the batch and stores the primary graph as the snapshot of
    the commit. Leaving with an error aborts the batch: nothing reaches the
    secondary store's commit and nothing is stored.
    """

    def __init__(
        self,
        version_store: GraphVersionStore,
        graph: DualWriteGraph,
        owner: str,
        repo: str,
        commit_sha: str,
        commit_message: str = "No message",
        commit_date: Optional[str] = None,
        file_hashes: Optional[Dict[str, str]] = None,
    ):
        self.version_store = version_store
        self.graph = graph
        self.owner = owner
        self.repo = repo
        self.commit_sha = commit_sha
        self.commit_message = commit_message
        self.commit_date = commit_date or datetime.now(timezone.utc).isoformat()
        self.file_hashes = file_hashes

        self.metadata: Optional[GraphMetadata] = None
        self.flush_result: Optional[FlushResult] = None

    def __enter__(self):
        """Enter ingestion session."""
        if self.version_store.has_commit(self.owner, self.repo, self.commit_sha):
            # Items missing from the new graph would otherwise linger there
            self.graph.clear_secondary()
        self.graph.begin_batch()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit ingestion session and store the snapshot on success."""
        if exc_type is not None:
            self.graph.abort_batch()
            logger.error(
                f"Ingestion of {self.owner}/{self.repo}@{self.commit_sha[:7]} failed: {exc_val}"
            )
            return False

        self.flush_result = self.graph.commit_batch()

        self.metadata = self.version_store.store(
            self.owner,
            self.repo,
            self.commit_sha,
            self.commit_message,
            self.commit_date,
            self.graph.to_stored_graph(),
            file_hashes=self.file_hashes,
        )
        logger.info(
            f"Ingested {self.owner}/{self.repo}@{self.commit_sha[:7]}: "
            f"{self.metadata.node_count} nodes, {self.metadata.relationship_count} relationships"
        )
        self.graph.log_dual_write_stats()
        return False


def ingest_graph(
    version_store: GraphVersionStore,
    graph: DualWriteGraph,
    owner: str,
    repo: str,
    commit_sha: str,
    stored_graph: StoredGraph,
    commit_message: str = "No message",
    commit_date: Optional[str] = None,
    file_hashes: Optional[Dict[str, str]] = None,
) -> GraphMetadata:
    """Feed a complete graph through a dual-write ingestion session.

    Nodes are written before relationships so the secondary store can
    resolve relationship endpoints.

    Returns:
        Metadata of the stored snapshot
    """
    with IngestionSession(
        version_store,
        graph,
        owner,
        repo,
        commit_sha,
        commit_message=commit_message,
        commit_date=commit_date,
        file_hashes=file_hashes,
    ) as session:
        for node in stored_graph.nodes:
            graph.add_node(node)
        for relationship in stored_graph.relationships:
            graph.add_relationship(relationship)

    return session.metadata
