"""MCP tool for storing, loading and comparing versioned graph analyses."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from ..graph_db.dual_write import DEFAULT_BATCH_SIZE, DualWriteGraph, SecondaryGraphStore
from ..indexer.change_detector import ChangeDetector
from ..indexer.ingestion import ingest_graph
from ..storage.errors import (
    GraphStorageError,
    NotFoundError,
    SerializationError,
    ValidationError,
)
from ..storage.models import StoredGraph, check_repo_coordinates, make_graph_id, short_sha
from ..storage.version_store import GraphVersionStore

logger = logging.getLogger(__name__)

SecondaryFactory = Callable[[str], Optional[SecondaryGraphStore]]


def _failure(error: GraphStorageError) -> dict:
    if isinstance(error, NotFoundError):
        error_type = "not_found"
    elif isinstance(error, ValidationError):
        error_type = "validation_error"
    else:
        error_type = "storage_error"
    return {"success": False, "error": str(error), "error_type": error_type}


def _require_fields(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class AnalysisTool:
    """Request surface over the version store, diff engine and change detector."""

    def __init__(
        self,
        version_store: GraphVersionStore,
        change_detector: Optional[ChangeDetector] = None,
        secondary_factory: Optional[SecondaryFactory] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """Initialize analysis tool.

        Args:
            version_store: Store holding the snapshots
            change_detector: Change detector for re-ingestion checks
            secondary_factory: Builds a secondary store for a graph id (None disables it)
            batch_size: Auto-flush threshold for dual writes
        """
        self.version_store = version_store
        self.change_detector = change_detector or ChangeDetector()
        self.secondary_factory = secondary_factory
        self.batch_size = batch_size

    def _build_graph(self, graph_id: str) -> DualWriteGraph:
        secondary = None
        if self.secondary_factory is not None:
            try:
                secondary = self.secondary_factory(graph_id)
            except Exception as e:
                logger.warning(f"Secondary store unavailable for {graph_id}, writing primary only: {e}")
        return DualWriteGraph(secondary=secondary, batch_size=self.batch_size)

    def store_analysis(
        self,
        owner: str,
        repo: str,
        commit_sha: str,
        graph: Union[StoredGraph, Dict[str, Any], None],
        commit_message: Optional[str] = None,
        commit_date: Optional[str] = None,
        file_hashes: Optional[Dict[str, str]] = None,
    ) -> dict:
        """Store a graph analysis for a commit.

        Args:
            owner: Repository owner
            repo: Repository name
            commit_sha: Commit hash
            graph: Graph with "nodes" and "relationships"
            commit_message: Commit message (defaults to "No message")
            commit_date: Commit date (defaults to now)
            file_hashes: Optional path -> content hash map used for change detection

        Returns:
            Dictionary with the stored metadata
        """
        try:
            _require_fields(owner=owner, repo=repo, commitSha=commit_sha, graph=graph)
            check_repo_coordinates(owner, repo, commit_sha)

            if isinstance(graph, StoredGraph):
                stored_graph = graph
            else:
                try:
                    stored_graph = StoredGraph.from_dict(graph)
                except SerializationError as e:
                    raise ValidationError(f"Invalid graph: {e}")

            metadata = ingest_graph(
                self.version_store,
                self._build_graph(make_graph_id(owner, repo, commit_sha)),
                owner,
                repo,
                commit_sha,
                stored_graph,
                commit_message=commit_message or "No message",
                commit_date=commit_date or datetime.now(timezone.utc).isoformat(),
                file_hashes=file_hashes,
            )

            return {
                "success": True,
                "metadata": metadata.to_dict(),
                "message": f"Graph stored for {owner}/{repo}@{short_sha(commit_sha)}",
            }

        except GraphStorageError as e:
            if not isinstance(e, ValidationError):
                logger.error(f"Failed to store graph: {e}")
            return _failure(e)

    def get_history(self) -> dict:
        """Get all analysis history."""
        try:
            history = self.version_store.get_all_history()
            return {
                "success": True,
                "history": [entry.to_dict() for entry in history],
                "count": len(history),
            }
        except GraphStorageError as e:
            logger.error(f"Failed to get history: {e}")
            return _failure(e)

    def get_repo_history(self, owner: str, repo: str) -> dict:
        """Get history for a specific repository."""
        try:
            _require_fields(owner=owner, repo=repo)
            entry = self.version_store.get_repo_history(owner, repo)
            if entry is None:
                raise NotFoundError("No history found for this repository")
            return {"success": True, "history": entry.to_dict()}
        except GraphStorageError as e:
            return _failure(e)

    def load_graph(self, owner: str, repo: str, commit_sha: str) -> dict:
        """Load the graph stored for a commit."""
        try:
            _require_fields(owner=owner, repo=repo, commitSha=commit_sha)
            graph = self.version_store.load(owner, repo, commit_sha)
            if graph is None:
                raise NotFoundError("Graph not found for this commit")
            return {"success": True, "graph": graph.to_dict()}
        except GraphStorageError as e:
            return _failure(e)

    def compare_commits(
        self, owner: str, repo: str, commit_sha1: str, commit_sha2: str
    ) -> dict:
        """Compare the graphs of two commits.

        Returns:
            Dictionary with added/removed nodes and relationships plus summary counts
        """
        try:
            _require_fields(
                owner=owner, repo=repo, commitSha1=commit_sha1, commitSha2=commit_sha2
            )
            diff = self.version_store.compare(owner, repo, commit_sha1, commit_sha2)
            if diff is None:
                raise NotFoundError("One or both graphs not found")
            return {"success": True, "comparison": diff.to_dict()}
        except GraphStorageError as e:
            return _failure(e)

    def delete_graph(self, owner: str, repo: str, commit_sha: str) -> dict:
        """Delete the graph stored for a commit."""
        try:
            _require_fields(owner=owner, repo=repo, commitSha=commit_sha)
            if not self.version_store.delete_graph(owner, repo, commit_sha):
                raise NotFoundError("Graph not found")
            graph = self._build_graph(make_graph_id(owner, repo, commit_sha))
            return {
                "success": True,
                "secondary_cleared": graph.clear_secondary(),
                "message": f"Graph deleted for {owner}/{repo}@{short_sha(commit_sha)}",
            }
        except GraphStorageError as e:
            if not isinstance(e, (NotFoundError, ValidationError)):
                logger.error(f"Failed to delete graph: {e}")
            return _failure(e)

    def check_for_changes(
        self, owner: str, repo: str, current_hashes: Dict[str, str]
    ) -> dict:
        """Check whether a repository changed since its latest stored snapshot.

        Args:
            owner: Repository owner
            repo: Repository name
            current_hashes: Path -> content hash map of the files as they are now

        Returns:
            Dictionary with the change plan and whether re-ingestion is needed
        """
        try:
            _require_fields(owner=owner, repo=repo)
            latest = self.version_store.get_latest_commit(owner, repo)

            stored_hashes: Dict[str, str] = {}
            if latest is not None:
                stored_hashes = (
                    self.version_store.load_file_hashes(owner, repo, latest.commit_sha) or {}
                )

            changes = self.change_detector.plan_reingestion(current_hashes or {}, stored_hashes)

            return {
                "success": True,
                "needs_reingestion": latest is None or changes.has_changes,
                "base_commit": latest.commit_sha if latest else None,
                "changes": changes.to_dict(),
            }
        except GraphStorageError as e:
            return _failure(e)

    def get_stats(self) -> dict:
        try:
            return {"success": True, "storage": self.version_store.get_stats()}
        except GraphStorageError as e:
            return _failure(e)
