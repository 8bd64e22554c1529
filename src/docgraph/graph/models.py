"""
Graph Models - Data classes for knowledge graph nodes, edges and filters.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeType(str, Enum):
    """Kinds of entity stored in the graph."""

    PROJECT = "project"  # A repository observed by the scanner
    CONFIGURATION = "configuration"  # One static site generator
    ANALYSIS = "analysis"  # A single scanner observation
    USER = "user"  # A person whose usage is learned


class EdgeType(str, Enum):
    """Kinds of directed relationship between nodes."""

    PROJECT_ANALYZED_BY = "project_analyzed_by"  # project -> analysis
    PROJECT_DEPLOYED_WITH = "project_deployed_with"  # project -> configuration
    PROJECT_RECOMMENDED = "project_recommended"  # project -> configuration
    USER_PREFERS = "user_prefers"  # user -> configuration


@dataclass
class Node:
    """A graph entity."""

    id: str
    type: NodeType
    properties: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @property
    def archived(self) -> bool:
        return bool(self.properties.get("archived", False))

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        return {
            "id": self.id,
            "type": self.type.value if isinstance(self.type, NodeType) else self.type,
            "properties": copy.deepcopy(self.properties),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Node":
        """Create from the persisted JSON shape."""
        return cls(
            id=data["id"],
            type=NodeType(data["type"]),
            properties=copy.deepcopy(data.get("properties") or {}),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )


@dataclass
class Edge:
    """A directed, typed relationship between two existing nodes."""

    id: str
    type: EdgeType
    source: str
    target: str
    properties: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        return {
            "id": self.id,
            "type": self.type.value if isinstance(self.type, EdgeType) else self.type,
            "source": self.source,
            "target": self.target,
            "properties": copy.deepcopy(self.properties),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Edge":
        """Create from the persisted JSON shape."""
        return cls(
            id=data["id"],
            type=EdgeType(data["type"]),
            source=data["source"],
            target=data["target"],
            properties=copy.deepcopy(data.get("properties") or {}),
            created_at=data["createdAt"],
        )


def _properties_match(actual: dict[str, Any], expected: dict[str, Any] | None) -> bool:
    if not expected:
        return True
    return all(
        key in actual and actual[key] == value for key, value in expected.items()
    )


@dataclass
class NodeFilter:
    """Criteria for ``GraphStore.find_nodes``. Unset fields match everything."""

    type: NodeType | None = None
    ids: list[str] | None = None
    properties: dict[str, Any] | None = None
    include_archived: bool = False

    def matches(self, node: Node) -> bool:
        if self.type is not None and node.type != NodeType(self.type):
            return False
        if self.ids is not None and node.id not in self.ids:
            return False
        if not self.include_archived and node.archived:
            return False
        return _properties_match(node.properties, self.properties)


@dataclass
class EdgeFilter:
    """Criteria for ``GraphStore.find_edges``. Unset fields match everything.

    ``since``/``until`` compare against ``created_at`` (inclusive/exclusive).
    """

    type: EdgeType | None = None
    source: str | None = None
    target: str | None = None
    sources: list[str] | None = None
    properties: dict[str, Any] | None = None
    since: str | None = None
    until: str | None = None

    def matches(self, edge: Edge) -> bool:
        if self.type is not None and edge.type != EdgeType(self.type):
            return False
        if self.source is not None and edge.source != self.source:
            return False
        if self.target is not None and edge.target != self.target:
            return False
        if self.sources is not None and edge.source not in self.sources:
            return False
        if self.since is not None and edge.created_at < self.since:
            return False
        if self.until is not None and edge.created_at >= self.until:
            return False
        return _properties_match(edge.properties, self.properties)
