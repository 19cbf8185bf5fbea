"""In-memory LRU caches with TTL for upstream file and directory responses.

Re-ingesting a repository fetches mostly the same files again; caching the
responses avoids the network round-trip for everything that has not changed.
Entries carry an optional ETag so callers can issue conditional requests.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

FILE_CACHE_MAX_ENTRIES = 1000
FILE_CACHE_MAX_BYTES = 10 * 1024 * 1024
FILE_CACHE_TTL_SECONDS = 5 * 60
DIRECTORY_CACHE_MAX_ENTRIES = 500
DIRECTORY_CACHE_TTL_SECONDS = 2 * 60


@dataclass
class CacheEntry(Generic[V]):
    """Cached value with its validator and store time."""

    data: V
    etag: Optional[str]
    stored_at: float
    size: int = 0


class BoundedTTLCache(Generic[V]):
    """Thread-safe LRU cache with a per-cache TTL and optional byte budget.

    Expiry is lazy: an entry older than ``ttl_seconds`` is reported as a miss
    on read, even though capacity pressure has not evicted it yet.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        max_bytes: Optional[int] = None,
        size_of: Optional[Callable[[V], int]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            max_entries: Maximum number of entries
            ttl_seconds: Age after which an entry counts as expired
            max_bytes: Total size budget (requires size_of)
            size_of: Computes the size of a value
            clock: Monotonic time source
        """
        if max_bytes is not None and size_of is None:
            raise ValueError("size_of is required when max_bytes is set")

        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.max_bytes = max_bytes
        self._size_of = size_of
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._total_bytes = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _is_expired(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.stored_at >= self.ttl_seconds

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._total_bytes -= entry.size

    def get(self, key: str) -> Optional[V]:
        """Return a fresh cached value, counting a hit or a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if self._is_expired(entry):
                # Kept until evicted so its etag can still drive a conditional refresh
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return entry.data

    def peek(self, key: str) -> Optional[CacheEntry[V]]:
        """Return the raw entry, expired or not, without touching counters or recency."""
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, data: V, etag: Optional[str] = None) -> bool:
        """Store a value.

        Returns:
            False if the value alone exceeds the byte budget and was not cached
        """
        size = self._size_of(data) if self._size_of else 0

        with self._lock:
            if key in self._entries:
                self._remove(key)

            if self.max_bytes is not None and size > self.max_bytes:
                logger.debug(f"Not caching {key}: {size} bytes exceeds cache budget")
                return False

            self._entries[key] = CacheEntry(
                data=data, etag=etag, stored_at=self._clock(), size=size
            )
            self._total_bytes += size

            while len(self._entries) > self.max_entries or (
                self.max_bytes is not None and self._total_bytes > self.max_bytes
            ):
                oldest_key = next(iter(self._entries))
                self._remove(oldest_key)
                logger.debug(f"Evicted {oldest_key} from cache")

            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._entries:
                self._remove(key)
                return True
            return False

    def _reset(self) -> None:
        self._entries.clear()
        self._total_bytes = 0
        self.hits = 0
        self.misses = 0

    def clear(self) -> None:
        with self._lock:
            self._reset()

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max": self.max_entries,
                "bytes": self._total_bytes,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": (self.hits / total * 100) if total > 0 else None,
            }


def _format_rate(rate: Optional[float]) -> str:
    return f"{rate:.1f}%" if rate is not None else "N/A"


class ResponseCache:
    """File-content and directory-listing caches for upstream fetches."""

    def __init__(
        self,
        file_max_entries: int = FILE_CACHE_MAX_ENTRIES,
        file_max_bytes: int = FILE_CACHE_MAX_BYTES,
        file_ttl_seconds: float = FILE_CACHE_TTL_SECONDS,
        directory_max_entries: int = DIRECTORY_CACHE_MAX_ENTRIES,
        directory_ttl_seconds: float = DIRECTORY_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.file_cache: BoundedTTLCache[str] = BoundedTTLCache(
            max_entries=file_max_entries,
            ttl_seconds=file_ttl_seconds,
            max_bytes=file_max_bytes,
            size_of=lambda data: len(data.encode("utf-8")),
            clock=clock,
        )
        self.directory_cache: BoundedTTLCache[List[Any]] = BoundedTTLCache(
            max_entries=directory_max_entries,
            ttl_seconds=directory_ttl_seconds,
            clock=clock,
        )

    def _cache_for(self, kind: str) -> BoundedTTLCache:
        if kind == "file":
            return self.file_cache
        if kind == "dir":
            return self.directory_cache
        raise ValueError(f"Unknown cache kind: {kind!r} (expected 'file' or 'dir')")

    def get_file_content(self, key: str) -> Optional[str]:
        return self.file_cache.get(key)

    def set_file_content(self, key: str, data: str, etag: Optional[str] = None) -> None:
        self.file_cache.set(key, data, etag)

    def get_directory(self, key: str) -> Optional[List[Any]]:
        return self.directory_cache.get(key)

    def set_directory(self, key: str, data: List[Any], etag: Optional[str] = None) -> None:
        self.directory_cache.set(key, data, etag)

    def get_etag(self, key: str, kind: str) -> Optional[str]:
        """Return the stored validator for a key, even if the entry has expired.

        Args:
            key: Cache key
            kind: "file" or "dir"
        """
        entry = self._cache_for(kind).peek(key)
        return entry.etag if entry else None

    def get_stale(self, key: str, kind: str) -> Optional[Any]:
        """Return a cached value regardless of age, for conditional refreshes."""
        entry = self._cache_for(kind).peek(key)
        return entry.data if entry else None

    def clear(self) -> None:
        """Empty both caches and reset all counters."""
        with self.file_cache._lock, self.directory_cache._lock:
            self.file_cache._reset()
            self.directory_cache._reset()
        logger.info("Response cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        file_stats = self.file_cache.stats()
        dir_stats = self.directory_cache.stats()

        total_requests = (
            file_stats["hits"] + file_stats["misses"] + dir_stats["hits"] + dir_stats["misses"]
        )
        total_hits = file_stats["hits"] + dir_stats["hits"]

        return {
            "file_cache": file_stats,
            "directory_cache": dir_stats,
            "overall": {
                "total_requests": total_requests,
                "total_hits": total_hits,
                "hit_rate": (total_hits / total_requests * 100) if total_requests else None,
            },
        }

    def log_stats(self) -> None:
        """Log cache performance statistics."""
        stats = self.get_stats()
        file_stats = stats["file_cache"]
        dir_stats = stats["directory_cache"]
        overall = stats["overall"]
        logger.info(
            f"Response cache: files {file_stats['size']}/{file_stats['max']} cached "
            f"({_format_rate(file_stats['hit_rate'])} hit rate), "
            f"directories {dir_stats['size']}/{dir_stats['max']} cached "
            f"({_format_rate(dir_stats['hit_rate'])} hit rate), "
            f"overall {overall['total_hits']}/{overall['total_requests']} hits "
            f"({_format_rate(overall['hit_rate'])})"
        )
