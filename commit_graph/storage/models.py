"""Data models for versioned code graph snapshots."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .errors import SerializationError, ValidationError

# Closed set of values allowed in node/relationship property maps
PropertyValue = Union[
    None, bool, int, float, str, List["PropertyValue"], Dict[str, "PropertyValue"]
]
Properties = Dict[str, PropertyValue]

SHORT_SHA_LENGTH = 7


def short_sha(commit_sha: str) -> str:
    """Return the abbreviated commit hash used in graph ids."""
    return commit_sha[:SHORT_SHA_LENGTH]


def make_graph_id(owner: str, repo: str, commit_sha: str) -> str:
    """Build the deterministic snapshot id (owner_repo_shortSha)."""
    return f"{owner}_{repo}_{short_sha(commit_sha)}"


def make_repo_full_name(owner: str, repo: str) -> str:
    return f"{owner}/{repo}"


def check_path_component(value: Any, field_name: str) -> str:
    """Ensure a repository coordinate can be used inside a directory name.

    Raises:
        ValidationError: If the value is empty, not a string, contains a path
            separator or NUL byte, or is "." / ".."
    """
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field_name} must be a non-empty string")
    if "/" in value or "\\" in value or "\x00" in value or value in (".", ".."):
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    return value


def check_repo_coordinates(owner: Any, repo: Any, commit_sha: Any) -> None:
    check_path_component(owner, "owner")
    check_path_component(repo, "repo")
    check_path_component(commit_sha, "commitSha")


def _check_property_value(value: Any, path: str) -> PropertyValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, list):
        return [_check_property_value(v, f"{path}[{i}]") for i, v in enumerate(value)]
    if isinstance(value, dict):
        return {
            str(k): _check_property_value(v, f"{path}.{k}") for k, v in value.items()
        }
    raise SerializationError(
        f"Unsupported property value at {path}: {type(value).__name__}"
    )


def validate_properties(properties: Any, owner_id: str = "") -> Properties:
    """Validate a property map, preserving key order.

    Args:
        properties: Raw property mapping (None is treated as empty)
        owner_id: Id of the node/relationship, used in error messages

    Returns:
        The validated property map

    Raises:
        SerializationError: If the map holds an unsupported value type
    """
    if properties is None:
        return {}
    if not isinstance(properties, dict):
        raise SerializationError(
            f"Properties of {owner_id or 'item'} must be a mapping, "
            f"got {type(properties).__name__}"
        )
    return {
        str(key): _check_property_value(value, f"{owner_id}.{key}")
        for key, value in properties.items()
    }


def _require(data: Dict[str, Any], key: str, kind: str) -> Any:
    try:
        return data[key]
    except (KeyError, TypeError):
        raise SerializationError(f"{kind} is missing required field '{key}'")


@dataclass
class GraphNode:
    """A node in a code graph snapshot."""

    id: str
    label: str  # File, Function, Class, Method, Folder, etc.
    properties: Properties = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "properties": self.properties}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphNode":
        node_id = str(_require(data, "id", "Node"))
        return cls(
            id=node_id,
            label=str(_require(data, "label", "Node")),
            properties=validate_properties(data.get("properties"), node_id),
        )


@dataclass
class GraphRelationship:
    """A directed relationship between two nodes.

    The id is only unique within one snapshot; two ingestions of the same
    logical edge usually get different ids.
    """

    id: str
    type: str  # CONTAINS, CALLS, IMPORTS, EXTENDS, IMPLEMENTS, DEFINES, etc.
    source: str
    target: str
    properties: Properties = field(default_factory=dict)

    @property
    def composite_key(self) -> str:
        """Logical identity used when diffing snapshots."""
        return f"{self.source}|{self.type}|{self.target}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "target": self.target,
            "properties": self.properties,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphRelationship":
        rel_id = str(_require(data, "id", "Relationship"))
        return cls(
            id=rel_id,
            type=str(_require(data, "type", "Relationship")),
            source=str(_require(data, "source", "Relationship")),
            target=str(_require(data, "target", "Relationship")),
            properties=validate_properties(data.get("properties"), rel_id),
        )


@dataclass
class StoredGraph:
    """Ordered nodes and relationships of one snapshot."""

    nodes: List[GraphNode] = field(default_factory=list)
    relationships: List[GraphRelationship] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "relationships": [rel.to_dict() for rel in self.relationships],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredGraph":
        if not isinstance(data, dict):
            raise SerializationError(
                f"Graph payload must be an object, got {type(data).__name__}"
            )
        nodes = data.get("nodes") or []
        relationships = data.get("relationships") or []
        if not isinstance(nodes, list) or not isinstance(relationships, list):
            raise SerializationError("Graph nodes and relationships must be lists")
        return cls(
            nodes=[GraphNode.from_dict(n) for n in nodes],
            relationships=[GraphRelationship.from_dict(r) for r in relationships],
        )


@dataclass
class GraphMetadata:
    """Index record describing one stored snapshot."""

    id: str
    repo_owner: str
    repo_name: str
    commit_sha: str
    commit_number: int
    commit_message: str
    commit_date: str
    created_at: str
    node_count: int
    relationship_count: int
    storage_locator: str  # directory holding the payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repoOwner": self.repo_owner,
            "repoName": self.repo_name,
            "commitSha": self.commit_sha,
            "commitNumber": self.commit_number,
            "commitMessage": self.commit_message,
            "commitDate": self.commit_date,
            "createdAt": self.created_at,
            "nodeCount": self.node_count,
            "relationshipCount": self.relationship_count,
            "storageLocator": self.storage_locator,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphMetadata":
        try:
            return cls(
                id=data["id"],
                repo_owner=data["repoOwner"],
                repo_name=data["repoName"],
                commit_sha=data["commitSha"],
                commit_number=int(data["commitNumber"]),
                commit_message=data.get("commitMessage", ""),
                commit_date=data.get("commitDate", ""),
                created_at=data.get("createdAt", ""),
                node_count=int(data.get("nodeCount", 0)),
                relationship_count=int(data.get("relationshipCount", 0)),
                storage_locator=data["storageLocator"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Invalid graph metadata record: {e}")


@dataclass
class AnalysisHistoryEntry:
    """All stored commits of one repository, in storage order."""

    id: str
    repo_full_name: str
    commits: List[GraphMetadata] = field(default_factory=list)
    last_updated: str = ""

    def find_commit_index(self, commit_sha: str) -> int:
        """Return the slot of a commit, or -1 if it is not stored."""
        for index, commit in enumerate(self.commits):
            if commit.commit_sha == commit_sha:
                return index
        return -1

    def get_commit(self, commit_sha: str) -> Optional[GraphMetadata]:
        index = self.find_commit_index(commit_sha)
        return self.commits[index] if index >= 0 else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repoFullName": self.repo_full_name,
            "commits": [commit.to_dict() for commit in self.commits],
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisHistoryEntry":
        try:
            return cls(
                id=data["id"],
                repo_full_name=data["repoFullName"],
                commits=[GraphMetadata.from_dict(c) for c in data.get("commits", [])],
                last_updated=data.get("lastUpdated", ""),
            )
        except (KeyError, TypeError) as e:
            raise SerializationError(f"Invalid history entry: {e}")
