"""Cached GitHub contents client for fetching files and directory listings."""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..cache.response_cache import ResponseCache

logger = logging.getLogger(__name__)


def make_cache_key(owner: str, repo: str, path: str, ref: Optional[str] = None) -> str:
    key = f"{owner}/{repo}/{path.strip('/')}"
    return f"{key}@{ref}" if ref else key


class GitHubContentFetcher:
    """Fetch repository contents from the GitHub API through a ResponseCache.

    A fresh cache entry is returned without any request. An expired entry
    that still has an ETag is revalidated with ``If-None-Match``; a 304
    response re-stores the cached value instead of downloading it again.
    """

    def __init__(
        self,
        cache: ResponseCache,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize GitHub client.

        Args:
            cache: Response cache shared across fetches
            token: Optional GitHub token for authenticated requests
            base_url: GitHub API base URL
            timeout: Request timeout in seconds
            transport: Custom httpx transport (mainly for tests)
        """
        self.cache = cache
        self.base_url = base_url.rstrip("/")

        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.requests_made = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def _get(
        self, url: str, ref: Optional[str], etag: Optional[str]
    ) -> httpx.Response:
        headers = {"If-None-Match": etag} if etag else {}
        params = {"ref": ref} if ref else None
        self.requests_made += 1
        response = await self._client.get(url, headers=headers, params=params)
        if response.status_code != 304:
            response.raise_for_status()
        return response

    async def fetch_file(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> str:
        """Fetch the text content of a file.

        Args:
            owner: Repository owner
            repo: Repository name
            path: File path inside the repository
            ref: Branch, tag or commit (default branch if omitted)

        Returns:
            Decoded file content

        Raises:
            httpx.HTTPStatusError: If GitHub answers with an error status
        """
        key = make_cache_key(owner, repo, path, ref)

        cached = self.cache.get_file_content(key)
        if cached is not None:
            logger.debug(f"Cache hit for file {key}")
            return cached

        etag = self.cache.get_etag(key, "file")
        response = await self._get(
            f"/repos/{owner}/{repo}/contents/{path.strip('/')}", ref, etag
        )

        if response.status_code == 304:
            stale = self.cache.get_stale(key, "file")
            if stale is not None:
                logger.debug(f"File {key} not modified, refreshing cache entry")
                self.cache.set_file_content(key, stale, etag)
                return stale
            # Entry evicted between lookup and response; fetch unconditionally
            response = await self._get(
                f"/repos/{owner}/{repo}/contents/{path.strip('/')}", ref, None
            )

        content = self._decode_file(key, response.json())
        self.cache.set_file_content(key, content, response.headers.get("ETag"))
        return content

    async def fetch_directory(
        self, owner: str, repo: str, path: str = "", ref: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch a directory listing.

        Args:
            owner: Repository owner
            repo: Repository name
            path: Directory path inside the repository ("" for the root)
            ref: Branch, tag or commit (default branch if omitted)

        Returns:
            Listing entries as returned by the contents API
        """
        key = make_cache_key(owner, repo, path, ref)

        cached = self.cache.get_directory(key)
        if cached is not None:
            logger.debug(f"Cache hit for directory {key}")
            return cached

        url = f"/repos/{owner}/{repo}/contents/{path.strip('/')}".rstrip("/")
        etag = self.cache.get_etag(key, "dir")
        response = await self._get(url, ref, etag)

        if response.status_code == 304:
            stale = self.cache.get_stale(key, "dir")
            if stale is not None:
                logger.debug(f"Directory {key} not modified, refreshing cache entry")
                self.cache.set_directory(key, stale, etag)
                return stale
            response = await self._get(url, ref, None)

        listing = response.json()
        if not isinstance(listing, list):
            raise ValueError(f"Expected a directory listing for {key}, got a single entry")

        self.cache.set_directory(key, listing, response.headers.get("ETag"))
        return listing

    @staticmethod
    def _decode_file(key: str, payload: Any) -> str:
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a file for {key}, got a directory listing")
        if payload.get("encoding") == "base64":
            return base64.b64decode(payload.get("content", "")).decode("utf-8", errors="replace")
        return payload.get("content") or ""
