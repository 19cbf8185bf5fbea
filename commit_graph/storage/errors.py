"""Error types for graph snapshot storage."""


class GraphStorageError(Exception):
    """Base class for graph storage errors."""


class NotFoundError(GraphStorageError):
    """Repository, commit, or graph payload does not exist."""


class ValidationError(GraphStorageError):
    """Required input fields are missing or malformed."""


class StorageIOError(GraphStorageError):
    """Reading or writing the metadata index or a graph payload failed."""


class SecondaryWriteError(GraphStorageError):
    """A write to the secondary graph store failed.

    Never fatal: the dual-write coordinator records it and carries on.
    """

    def __init__(self, kind: str, item_id: str, cause: Exception):
        super().__init__(f"Secondary {kind} write failed for {item_id}: {cause}")
        self.kind = kind
        self.item_id = item_id
        self.cause = cause


class SerializationError(GraphStorageError):
    """A persisted payload could not be decoded."""
