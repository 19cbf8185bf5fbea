"""Content-hash based change detection for incremental re-ingestion."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Tuple, Union

import blake3

logger = logging.getLogger(__name__)

DEFAULT_HASH_BATCH_SIZE = 50


@dataclass
class ChangeSet:
    """File-level changes between two path -> hash maps."""

    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "added": self.added,
            "modified": self.modified,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
        }


class ChangeDetector:
    """Decides whether a repository needs re-ingestion, without network access."""

    def __init__(self, batch_size: int = DEFAULT_HASH_BATCH_SIZE):
        """Initialize change detector.

        Args:
            batch_size: Number of files hashed per batch
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size

    @staticmethod
    def hash_content(content: Union[str, bytes]) -> str:
        """Compute the Blake3 hash of file content.

        Args:
            content: File content (text is encoded as UTF-8)

        Returns:
            Hexadecimal hash string
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        return blake3.blake3(content).hexdigest()

    def _batches(
        self, file_contents: Mapping[str, Union[str, bytes]]
    ) -> Iterator[List[Tuple[str, Union[str, bytes]]]]:
        batch = []
        for item in file_contents.items():
            batch.append(item)
            if len(batch) >= self.batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def hash_files(self, file_contents: Mapping[str, Union[str, bytes]]) -> Dict[str, str]:
        """Hash many files in bounded batches.

        Args:
            file_contents: Mapping of path to file content

        Returns:
            Mapping of path to content hash
        """
        results: Dict[str, str] = {}
        for batch_number, batch in enumerate(self._batches(file_contents), start=1):
            for path, content in batch:
                results[path] = self.hash_content(content)
            logger.debug(f"Hashed batch {batch_number} ({len(batch)} files)")
        return results

    @staticmethod
    def compare_hashes(current: Mapping[str, str], stored: Mapping[str, str]) -> ChangeSet:
        """Classify every path of both maps as added, modified, deleted or unchanged.

        Args:
            current: Hashes of the files as they are now
            stored: Hashes recorded at the previous ingestion

        Returns:
            ChangeSet whose four lists partition the union of both key sets
        """
        changes = ChangeSet()

        for path, file_hash in current.items():
            if path not in stored:
                changes.added.append(path)
            elif stored[path] != file_hash:
                changes.modified.append(path)
            else:
                changes.unchanged.append(path)

        for path in stored:
            if path not in current:
                changes.deleted.append(path)

        return changes

    @classmethod
    def has_changes(cls, current: Mapping[str, str], stored: Mapping[str, str]) -> bool:
        """Check if any file was added, modified or deleted."""
        if cls.file_counts_differ(current, stored):
            return True
        return cls.compare_hashes(current, stored).has_changes

    @staticmethod
    def file_counts_differ(current: Mapping[str, str], stored: Mapping[str, str]) -> bool:
        """Fast pre-check: differing file counts always mean something changed."""
        return len(current) != len(stored)

    def plan_reingestion(self, current: Mapping[str, str], stored: Mapping[str, str]) -> ChangeSet:
        """Work out which files must be re-ingested.

        Args:
            current: Hashes of the files as they are now
            stored: Hashes recorded at the previous ingestion

        Returns:
            ChangeSet describing the plan
        """
        if self.file_counts_differ(current, stored):
            logger.debug(
                f"File count changed ({len(stored)} -> {len(current)}), "
                f"re-ingestion needed"
            )

        changes = self.compare_hashes(current, stored)

        logger.info(
            f"Re-ingestion plan: {len(changes.added)} added, "
            f"{len(changes.modified)} modified, {len(changes.deleted)} deleted, "
            f"{len(changes.unchanged)} unchanged"
        )
        return changes
