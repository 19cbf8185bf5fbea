#!/usr/bin/env python3
"""Standalone ingestion script - stores one commit's graph and exits."""

import json
import logging
import os
import sys
from pathlib import Path

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

EXCLUDED_DIRS = {".git", "node_modules", "vendor", "__pycache__", ".venv", "venv", "dist", "build"}


def read_workspace_files(workspace_path: Path) -> dict:
    """Read the raw bytes of every file under the workspace, skipping excluded directories."""
    contents = {}
    for file_path in workspace_path.rglob("*"):
        if not file_path.is_file():
            continue
        rel_path = file_path.relative_to(workspace_path)
        if any(part in EXCLUDED_DIRS for part in rel_path.parts):
            continue
        try:
            contents[rel_path.as_posix()] = file_path.read_bytes()
        except OSError as e:
            logger.warning(f"Skipping unreadable file {rel_path}: {e}")
    return contents


def main():
    """Main ingestion function."""
    try:
        # Import here to avoid issues if running from different context
        from commit_graph.graph_db.dual_write import DualWriteGraph
        from commit_graph.graph_db.neo4j_client import Neo4jGraphStore
        from commit_graph.indexer.change_detector import ChangeDetector
        from commit_graph.indexer.ingestion import ingest_graph
        from commit_graph.storage.models import StoredGraph, make_graph_id
        from commit_graph.storage.version_store import GraphVersionStore

        # Get configuration from environment
        graph_file = os.getenv("GRAPH_FILE")
        owner = os.getenv("REPO_OWNER")
        repo = os.getenv("REPO_NAME")
        commit_sha = os.getenv("COMMIT_SHA")
        commit_message = os.getenv("COMMIT_MESSAGE", "No message")
        commit_date = os.getenv("COMMIT_DATE")
        workspace_path = os.getenv("WORKSPACE_PATH")
        data_dir = Path(os.getenv("DATA_DIR", "./data"))
        neo4j_uri = os.getenv("NEO4J_URI")
        neo4j_user = os.getenv("NEO4J_USER", "neo4j")
        neo4j_password = os.getenv("NEO4J_PASSWORD", "password")
        batch_size = int(os.getenv("DUAL_WRITE_BATCH_SIZE", "500"))
        hash_batch_size = int(os.getenv("HASH_BATCH_SIZE", "50"))
        incremental = os.getenv("INCREMENTAL", "true").lower() == "true"

        missing = [
            name
            for name, value in (
                ("GRAPH_FILE", graph_file),
                ("REPO_OWNER", owner),
                ("REPO_NAME", repo),
                ("COMMIT_SHA", commit_sha),
            )
            if not value
        ]
        if missing:
            logger.error(f"Missing required environment variables: {', '.join(missing)}")
            sys.exit(1)

        logger.info(f"Starting ingestion for {owner}/{repo}@{commit_sha[:7]}")
        logger.info(f"Data directory: {data_dir}")
        logger.info(f"Incremental: {incremental}")

        version_store = GraphVersionStore(data_dir)
        version_store.initialize()

        # Hash the workspace so later runs can skip unchanged commits
        file_hashes = None
        if workspace_path:
            detector = ChangeDetector(batch_size=hash_batch_size)
            file_hashes = detector.hash_files(read_workspace_files(Path(workspace_path)))
            logger.info(f"Hashed {len(file_hashes)} workspace files")

            latest = version_store.get_latest_commit(owner, repo)
            if incremental and latest is not None:
                stored_hashes = version_store.load_file_hashes(owner, repo, latest.commit_sha)
                if stored_hashes is not None and not detector.has_changes(
                    file_hashes, stored_hashes
                ):
                    logger.info(
                        f"No file changes since {latest.commit_sha[:7]}, skipping ingestion"
                    )
                    sys.exit(0)

        with open(graph_file, "r", encoding="utf-8") as f:
            stored_graph = StoredGraph.from_dict(json.load(f))

        secondary = None
        if neo4j_uri:
            try:
                secondary = Neo4jGraphStore(
                    neo4j_uri,
                    neo4j_user,
                    neo4j_password,
                    graph_id=make_graph_id(owner, repo, commit_sha),
                )
            except Exception as e:
                logger.warning(f"Neo4j unavailable, writing primary store only: {e}")

        graph = DualWriteGraph(secondary=secondary, batch_size=batch_size)
        try:
            metadata = ingest_graph(
                version_store,
                graph,
                owner,
                repo,
                commit_sha,
                stored_graph,
                commit_message=commit_message,
                commit_date=commit_date,
                file_hashes=file_hashes,
            )
        finally:
            if secondary is not None:
                secondary.close()

        stats = graph.get_dual_write_stats()
        logger.info("=" * 80)
        logger.info("Ingestion Complete!")
        logger.info(f"Repository: {owner}/{repo}")
        logger.info(f"Commit: {commit_sha} (#{metadata.commit_number})")
        logger.info(f"Nodes: {metadata.node_count}")
        logger.info(f"Relationships: {metadata.relationship_count}")
        logger.info(f"Secondary errors: {stats['secondary_errors']}")
        logger.info("=" * 80)

        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal error during ingestion: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
