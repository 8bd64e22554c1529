"""
Knowledge Graph Storage

Typed nodes and edges persisted as a single versioned JSON document:
- project: repositories observed by the scanner
- configuration: static site generators
- analysis: individual scanner observations
- user: people whose SSG usage is learned

Storage location: .docgraph/memory/knowledge-graph.json
"""

from .models import Edge, EdgeFilter, EdgeType, Node, NodeFilter, NodeType
from .schemas import (
    EDGE_ENDPOINTS,
    validate_edge_properties,
    validate_node_properties,
)
from .store import (
    GRAPH_FILENAME,
    SCHEMA_VERSION,
    GraphStore,
    GraphView,
    project_node_id,
)

__all__ = [
    # Models
    "Node",
    "Edge",
    "NodeType",
    "EdgeType",
    "NodeFilter",
    "EdgeFilter",
    # Schemas
    "EDGE_ENDPOINTS",
    "validate_node_properties",
    "validate_edge_properties",
    # Store
    "GraphStore",
    "GraphView",
    "GRAPH_FILENAME",
    "SCHEMA_VERSION",
    "project_node_id",
]
