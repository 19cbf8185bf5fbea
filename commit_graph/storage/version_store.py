"""Commit-addressed storage of code graph snapshots.

Each snapshot lives in its own directory under ``<data_dir>/graphs`` named
after its graph id (``owner_repo_shortSha``). A single metadata index,
``analysis-metadata.json``, lists every stored commit per repository and is
rewritten in full on each mutation.
"""

import copy
import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..indexer.graph_diff import GraphDiff, compare_graphs
from .errors import SerializationError, StorageIOError, ValidationError
from .models import (
    AnalysisHistoryEntry,
    GraphMetadata,
    StoredGraph,
    check_repo_coordinates,
    make_graph_id,
    make_repo_full_name,
)

logger = logging.getLogger(__name__)

GRAPHS_DIR_NAME = "graphs"
METADATA_FILE_NAME = "analysis-metadata.json"
GRAPH_FILE_NAME = "graph.json"
FILE_HASHES_FILE_NAME = "file_hashes.json"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class GraphVersionStore:
    """Persists graph snapshots per (repository, commit) with a metadata index."""

    def __init__(self, data_dir: Path):
        """Initialize version store.

        Nothing touches the disk until the first operation.

        Args:
            data_dir: Directory holding the index and the graph payloads
        """
        self.data_dir = Path(data_dir)
        self.graphs_dir = self.data_dir / GRAPHS_DIR_NAME
        self.metadata_file = self.data_dir / METADATA_FILE_NAME

        self._history: Dict[str, AnalysisHistoryEntry] = {}
        self._lock = threading.RLock()
        self._initialized = False

    def initialize(self) -> None:
        """Create storage directories and load the index. Safe to call repeatedly."""
        with self._lock:
            if self._initialized:
                return

            try:
                self.graphs_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageIOError(f"Cannot create data directory {self.data_dir}: {e}")

            self._load_metadata()
            self._initialized = True
            logger.info(f"Graph version store initialized at {self.data_dir}")

    def _load_metadata(self) -> None:
        """Load the metadata index from disk."""
        if not self.metadata_file.exists():
            logger.info("No existing analysis metadata found, starting fresh")
            return

        try:
            with open(self.metadata_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise StorageIOError(f"Cannot read metadata index {self.metadata_file}: {e}")
        except json.JSONDecodeError as e:
            raise SerializationError(f"Corrupt metadata index {self.metadata_file}: {e}")

        if not isinstance(data, list):
            raise SerializationError(
                f"Metadata index {self.metadata_file} must hold a list of entries"
            )

        self._history = {}
        for raw_entry in data:
            entry = AnalysisHistoryEntry.from_dict(raw_entry)
            self._history[entry.repo_full_name] = entry

        logger.info(f"Loaded {len(self._history)} repository histories")

    def _save_metadata(self, history: Dict[str, AnalysisHistoryEntry]) -> None:
        """Rewrite the whole metadata index from ``history``."""
        entries = [entry.to_dict() for entry in history.values()]
        self._write_json_atomic(self.metadata_file, entries)
        logger.debug(f"Saved metadata index with {len(entries)} repositories")

    def _graph_dir(self, graph_id: str) -> Path:
        return self._check_inside_graphs_dir(self.graphs_dir / graph_id)

    def _check_inside_graphs_dir(self, path: Path) -> Path:
        """Refuse payload locations that resolve outside ``graphs_dir``."""
        resolved = Path(path).resolve()
        root = self.graphs_dir.resolve()
        if resolved == root or root not in resolved.parents:
            raise ValidationError(f"Graph location {path} is outside {self.graphs_dir}")
        return resolved

    @staticmethod
    def _write_json_atomic(path: Path, data: Any) -> None:
        """Write JSON to a temp file next to ``path`` and move it into place."""
        try:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageIOError(f"Failed to write {path}: {e}")

    def store(
        self,
        owner: str,
        repo: str,
        commit_sha: str,
        commit_message: str,
        commit_date: str,
        graph: StoredGraph,
        file_hashes: Optional[Dict[str, str]] = None,
    ) -> GraphMetadata:
        """Store the graph for a specific commit.

        Re-storing a commit that is already indexed overwrites its payload and
        replaces its metadata in the same slot of the history.

        Args:
            owner: Repository owner
            repo: Repository name
            commit_sha: Full commit hash
            commit_message: Commit message
            commit_date: Commit date (ISO-8601)
            graph: Snapshot to persist
            file_hashes: Optional path -> content hash map the graph was built from

        Returns:
            Metadata of the stored snapshot

        Raises:
            ValidationError: If owner, repo or commit_sha cannot name a directory
            StorageIOError: If the payload or the index cannot be written
        """
        check_repo_coordinates(owner, repo, commit_sha)
        self.initialize()

        repo_full_name = make_repo_full_name(owner, repo)
        graph_id = make_graph_id(owner, repo, commit_sha)
        graph_dir = self._graph_dir(graph_id)

        with self._lock:
            try:
                graph_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageIOError(f"Cannot create graph directory {graph_dir}: {e}")

            self._write_json_atomic(graph_dir / GRAPH_FILE_NAME, graph.to_dict())
            if file_hashes is not None:
                self._write_json_atomic(graph_dir / FILE_HASHES_FILE_NAME, dict(file_hashes))
            elif (graph_dir / FILE_HASHES_FILE_NAME).exists():
                # Stale hashes from an earlier store of this commit
                (graph_dir / FILE_HASHES_FILE_NAME).unlink()

            logger.info(
                f"Stored graph {graph_id}: {len(graph.nodes)} nodes, "
                f"{len(graph.relationships)} relationships"
            )

            # Mutate a copy so a failed index write leaves memory matching disk
            entry = copy.deepcopy(self._history.get(repo_full_name))
            if entry is None:
                entry = AnalysisHistoryEntry(
                    id=f"{owner}_{repo}",
                    repo_full_name=repo_full_name,
                    last_updated=utc_now_iso(),
                )

            # Always count+1, including when an existing slot is overwritten
            commit_number = len(entry.commits) + 1

            metadata = GraphMetadata(
                id=graph_id,
                repo_owner=owner,
                repo_name=repo,
                commit_sha=commit_sha,
                commit_number=commit_number,
                commit_message=commit_message,
                commit_date=commit_date,
                created_at=utc_now_iso(),
                node_count=len(graph.nodes),
                relationship_count=len(graph.relationships),
                storage_locator=str(graph_dir),
            )

            existing_index = entry.find_commit_index(commit_sha)
            if existing_index >= 0:
                entry.commits[existing_index] = metadata
            else:
                entry.commits.append(metadata)

            entry.last_updated = utc_now_iso()
            history = dict(self._history)
            history[repo_full_name] = entry
            self._save_metadata(history)
            self._history = history

        return copy.copy(metadata)

    def _find_metadata(self, owner: str, repo: str, commit_sha: str) -> Optional[GraphMetadata]:
        entry = self._history.get(make_repo_full_name(owner, repo))
        if entry is None:
            return None
        return entry.get_commit(commit_sha)

    def has_commit(self, owner: str, repo: str, commit_sha: str) -> bool:
        self.initialize()
        with self._lock:
            return self._find_metadata(owner, repo, commit_sha) is not None

    def load(self, owner: str, repo: str, commit_sha: str) -> Optional[StoredGraph]:
        """Load the graph stored for an exact commit hash.

        Args:
            owner: Repository owner
            repo: Repository name
            commit_sha: Full commit hash (no prefix matching)

        Returns:
            The stored graph, or None if it is missing or unreadable

        Raises:
            ValidationError: If the coordinates or the recorded location are unsafe
        """
        check_repo_coordinates(owner, repo, commit_sha)
        self.initialize()

        with self._lock:
            metadata = self._find_metadata(owner, repo, commit_sha)
        if metadata is None:
            return None

        graph_dir = self._check_inside_graphs_dir(Path(metadata.storage_locator))
        graph_file = graph_dir / GRAPH_FILE_NAME
        try:
            with open(graph_file, "r", encoding="utf-8") as f:
                return StoredGraph.from_dict(json.load(f))
        except FileNotFoundError:
            logger.error(f"Graph payload missing for {metadata.id}: {graph_file}")
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt graph payload for {metadata.id}: {e}")
        except SerializationError as e:
            logger.error(f"Invalid graph payload for {metadata.id}: {e}")
        except OSError as e:
            logger.error(f"Failed to read graph payload for {metadata.id}: {e}")
        return None

    def load_file_hashes(self, owner: str, repo: str, commit_sha: str) -> Optional[Dict[str, str]]:
        """Load the file hashes recorded with a snapshot, if any."""
        check_repo_coordinates(owner, repo, commit_sha)
        self.initialize()

        with self._lock:
            metadata = self._find_metadata(owner, repo, commit_sha)
        if metadata is None:
            return None

        hashes_file = (
            self._check_inside_graphs_dir(Path(metadata.storage_locator)) / FILE_HASHES_FILE_NAME
        )
        if not hashes_file.exists():
            return None

        try:
            with open(hashes_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read file hashes for {metadata.id}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Invalid file hashes for {metadata.id}: expected an object")
            return None
        return {str(path): str(file_hash) for path, file_hash in data.items()}

    def delete_graph(self, owner: str, repo: str, commit_sha: str) -> bool:
        """Delete a stored snapshot and its index record.

        Args:
            owner: Repository owner
            repo: Repository name
            commit_sha: Full commit hash

        Returns:
            True if deleted, False if no such snapshot

        Raises:
            ValidationError: If the coordinates or the recorded location are unsafe
            StorageIOError: If the index cannot be rewritten (nothing is deleted)
        """
        check_repo_coordinates(owner, repo, commit_sha)
        self.initialize()

        repo_full_name = make_repo_full_name(owner, repo)

        with self._lock:
            current = self._history.get(repo_full_name)
            if current is None:
                return False

            index = current.find_commit_index(commit_sha)
            if index < 0:
                return False

            metadata = current.commits[index]
            graph_dir = self._check_inside_graphs_dir(Path(metadata.storage_locator))

            entry = copy.deepcopy(current)
            del entry.commits[index]
            entry.last_updated = utc_now_iso()

            history = dict(self._history)
            if entry.commits:
                history[repo_full_name] = entry
            else:
                del history[repo_full_name]
                logger.info(f"Removed last commit of {repo_full_name}, history dropped")

            self._save_metadata(history)
            self._history = history

            try:
                shutil.rmtree(graph_dir)
            except FileNotFoundError:
                logger.warning(f"Graph files already gone for {metadata.id}")
            except OSError as e:
                logger.error(f"Failed to delete graph files for {metadata.id}: {e}")

        logger.info(f"Deleted graph {metadata.id}")
        return True

    def get_all_history(self) -> List[AnalysisHistoryEntry]:
        self.initialize()
        with self._lock:
            return copy.deepcopy(list(self._history.values()))

    def get_repo_history(self, owner: str, repo: str) -> Optional[AnalysisHistoryEntry]:
        self.initialize()
        with self._lock:
            return copy.deepcopy(self._history.get(make_repo_full_name(owner, repo)))

    def get_latest_commit(self, owner: str, repo: str) -> Optional[GraphMetadata]:
        """Return the most recently appended commit of a repository."""
        entry = self.get_repo_history(owner, repo)
        if entry is None or not entry.commits:
            return None
        return entry.commits[-1]

    def compare(
        self, owner: str, repo: str, commit_sha_a: str, commit_sha_b: str
    ) -> Optional[GraphDiff]:
        """Diff two stored snapshots of a repository.

        Returns:
            GraphDiff from commit_sha_a to commit_sha_b, or None if either is missing
        """
        graph_a = self.load(owner, repo, commit_sha_a)
        graph_b = self.load(owner, repo, commit_sha_b)

        if graph_a is None or graph_b is None:
            return None

        return compare_graphs(graph_a, graph_b)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the stored snapshots."""
        history = self.get_all_history()
        return {
            "repositories": len(history),
            "snapshots": sum(len(entry.commits) for entry in history),
            "index_size_bytes": (
                self.metadata_file.stat().st_size if self.metadata_file.exists() else 0
            ),
        }
