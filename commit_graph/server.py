"""FastMCP server exposing versioned code graph storage."""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .cache.response_cache import ResponseCache
from .graph_db.neo4j_client import Neo4jGraphStore
from .indexer.change_detector import ChangeDetector
from .storage.version_store import GraphVersionStore
from .tools.analysis_tool import AnalysisTool
from .upstream.github_client import GitHubContentFetcher

logger = logging.getLogger(__name__)


def configure_logging(log_level: str, log_file: Optional[str]) -> None:
    """Send logs to the console (for Docker logs) and optionally to a file."""
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def get_env_config() -> Dict[str, Any]:
    """Get configuration from environment variables."""
    return {
        "data_dir": Path(os.getenv("DATA_DIR", "./data")),
        "neo4j_uri": os.getenv("NEO4J_URI"),
        "neo4j_user": os.getenv("NEO4J_USER", "neo4j"),
        "neo4j_password": os.getenv("NEO4J_PASSWORD", "password"),
        "dual_write_batch_size": int(os.getenv("DUAL_WRITE_BATCH_SIZE", "500")),
        "hash_batch_size": int(os.getenv("HASH_BATCH_SIZE", "50")),
        "github_token": os.getenv("GITHUB_TOKEN"),
        "github_api_url": os.getenv("GITHUB_API_URL", "https://api.github.com"),
        "http_timeout": float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_file": os.getenv("LOG_FILE", "/tmp/commit-graph-store.log"),
    }


@dataclass
class AppContext:
    """Components shared by all tools, built once at startup."""

    version_store: GraphVersionStore
    analysis_tool: AnalysisTool
    response_cache: ResponseCache
    fetcher: GitHubContentFetcher
    neo4j_store: Optional[Neo4jGraphStore] = None

    def close(self) -> None:
        if self.neo4j_store is not None:
            self.neo4j_store.close()


def initialize_components(config: Dict[str, Any]) -> AppContext:
    """Build all components from configuration."""
    logger.info("Initializing commit graph store...")

    version_store = GraphVersionStore(config["data_dir"])
    version_store.initialize()

    secondary_factory = None
    neo4j_store = None
    if config.get("neo4j_uri"):
        try:
            probe = Neo4jGraphStore(
                config["neo4j_uri"], config["neo4j_user"], config["neo4j_password"]
            )
            if probe.verify_connectivity():
                probe.create_indexes()
                neo4j_store = probe

                def secondary_factory(graph_id: str) -> Neo4jGraphStore:
                    return Neo4jGraphStore(
                        config["neo4j_uri"],
                        config["neo4j_user"],
                        config["neo4j_password"],
                        graph_id=graph_id,
                        driver=probe.driver,
                    )

                logger.info("Neo4j secondary store enabled")
            else:
                probe.close()
                logger.warning("Neo4j not reachable, secondary store disabled")
        except Exception as e:
            logger.warning(f"Neo4j unavailable, secondary store disabled: {e}")
    else:
        logger.info("Neo4j secondary store disabled (set NEO4J_URI to enable)")

    analysis_tool = AnalysisTool(
        version_store,
        change_detector=ChangeDetector(batch_size=config["hash_batch_size"]),
        secondary_factory=secondary_factory,
        batch_size=config["dual_write_batch_size"],
    )

    response_cache = ResponseCache()
    fetcher = GitHubContentFetcher(
        response_cache,
        token=config.get("github_token"),
        base_url=config["github_api_url"],
        timeout=config["http_timeout"],
    )

    logger.info("All components initialized successfully!")
    return AppContext(
        version_store=version_store,
        analysis_tool=analysis_tool,
        response_cache=response_cache,
        fetcher=fetcher,
        neo4j_store=neo4j_store,
    )


def create_server(context: AppContext) -> FastMCP:
    """Register the graph storage tools on a new FastMCP server."""
    mcp = FastMCP("commit-graph-store")
    analysis_tool = context.analysis_tool

    @mcp.tool()
    def store_analysis(
        owner: str,
        repo: str,
        commit_sha: str,
        graph: Dict[str, Any],
        commit_message: Optional[str] = None,
        commit_date: Optional[str] = None,
        file_hashes: Optional[Dict[str, str]] = None,
    ) -> dict:
        """Store the code graph of a repository at a specific commit.

        Args:
            owner: Repository owner
            repo: Repository name
            commit_sha: Commit hash the graph was built from
            graph: Object with "nodes" and "relationships" lists
            commit_message: Commit message
            commit_date: Commit date (ISO-8601)
            file_hashes: Path -> content hash map used for later change detection
        """
        return analysis_tool.store_analysis(
            owner, repo, commit_sha, graph, commit_message, commit_date, file_hashes
        )

    @mcp.tool()
    def get_history() -> dict:
        """List every repository with its stored commits."""
        return analysis_tool.get_history()

    @mcp.tool()
    def get_repo_history(owner: str, repo: str) -> dict:
        """List the stored commits of one repository."""
        return analysis_tool.get_repo_history(owner, repo)

    @mcp.tool()
    def load_graph(owner: str, repo: str, commit_sha: str) -> dict:
        """Load the graph stored for a commit."""
        return analysis_tool.load_graph(owner, repo, commit_sha)

    @mcp.tool()
    def compare_commits(owner: str, repo: str, commit_sha1: str, commit_sha2: str) -> dict:
        """Show nodes and relationships added or removed between two stored commits."""
        return analysis_tool.compare_commits(owner, repo, commit_sha1, commit_sha2)

    @mcp.tool()
    def delete_graph(owner: str, repo: str, commit_sha: str) -> dict:
        """Delete the graph stored for a commit."""
        return analysis_tool.delete_graph(owner, repo, commit_sha)

    @mcp.tool()
    def check_for_changes(owner: str, repo: str, current_hashes: Dict[str, str]) -> dict:
        """Check whether files changed since the latest stored commit.

        Args:
            owner: Repository owner
            repo: Repository name
            current_hashes: Path -> content hash map of the current files
        """
        return analysis_tool.check_for_changes(owner, repo, current_hashes)

    @mcp.tool()
    async def fetch_file(owner: str, repo: str, path: str, ref: Optional[str] = None) -> dict:
        """Fetch a file from GitHub through the response cache."""
        try:
            content = await context.fetcher.fetch_file(owner, repo, path, ref)
            return {"success": True, "path": path, "content": content}
        except Exception as e:
            logger.error(f"Error fetching {owner}/{repo}/{path}: {e}")
            return {"success": False, "error": str(e)}

    @mcp.tool()
    async def fetch_directory(
        owner: str, repo: str, path: str = "", ref: Optional[str] = None
    ) -> dict:
        """List a GitHub directory through the response cache."""
        try:
            entries: List[Dict[str, Any]] = await context.fetcher.fetch_directory(
                owner, repo, path, ref
            )
            return {"success": True, "path": path, "entries": entries}
        except Exception as e:
            logger.error(f"Error listing {owner}/{repo}/{path}: {e}")
            return {"success": False, "error": str(e)}

    @mcp.tool()
    def get_storage_status() -> dict:
        """Get statistics about stored snapshots and the response cache."""
        status = analysis_tool.get_stats()
        if status["success"]:
            status["cache"] = context.response_cache.get_stats()
            status["secondary_enabled"] = context.neo4j_store is not None
            if context.neo4j_store is not None:
                try:
                    status["secondary"] = context.neo4j_store.get_statistics()
                except Exception as e:
                    logger.warning(f"Could not read Neo4j statistics: {e}")
                    status["secondary"] = None
        return status

    @mcp.tool()
    def clear_response_cache() -> dict:
        """Drop all cached upstream responses and reset cache statistics."""
        context.response_cache.clear()
        return {"success": True, "message": "Response cache cleared"}

    return mcp


def main() -> None:
    config = get_env_config()
    configure_logging(config["log_level"], config["log_file"])

    logger.info("Starting commit graph store MCP server...")
    context = initialize_components(config)
    mcp = create_server(context)

    logger.info("Server ready!")
    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
    finally:
        context.response_cache.log_stats()
        asyncio.run(context.fetcher.aclose())
        context.close()


if __name__ == "__main__":
    main()
