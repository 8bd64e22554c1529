"""
DocGraph - documentation tooling knowledge graph.

Records projects, SSG configurations and deployment outcomes as a typed
graph, aggregates them into success statistics and trends, and recommends
a static site generator with a confidence score and reasoning trail.

Storage location: .docgraph/memory/knowledge-graph.json (project root)
"""

from .analytics import AnalyticsEngine, HealthScore, SSGStatistics, TrendDirection, TrendReport
from .config import ConfigurationError, Thresholds, load_config
from .errors import (
    AnalyticsError,
    AnalyticsTimeoutError,
    DocGraphError,
    EdgeNotFoundError,
    LockContentionError,
    NodeNotFoundError,
    StorageCorruptionError,
    StorageError,
    StorageWriteError,
    ValidationError,
)
from .events import EventTracker
from .graph import Edge, EdgeFilter, EdgeType, GraphStore, Node, NodeFilter, NodeType
from .preferences import PreferenceManager, UserPreferences
from .recommendation import Recommendation, RecommendationEngine
from .resolver import EntityResolver, ProjectDescriptor
from .service import DocGraph, ProjectContext, RankedSSG, open_graph
from .timeutils import Deadline

__version__ = "0.1.0"

__all__ = [
    # Facade
    "DocGraph",
    "open_graph",
    "ProjectContext",
    "RankedSSG",
    # Graph
    "GraphStore",
    "Node",
    "Edge",
    "NodeType",
    "EdgeType",
    "NodeFilter",
    "EdgeFilter",
    # Components
    "EntityResolver",
    "ProjectDescriptor",
    "EventTracker",
    "AnalyticsEngine",
    "SSGStatistics",
    "HealthScore",
    "TrendDirection",
    "TrendReport",
    "PreferenceManager",
    "UserPreferences",
    "RecommendationEngine",
    "Recommendation",
    "Deadline",
    # Configuration
    "load_config",
    "Thresholds",
    "ConfigurationError",
    # Errors
    "DocGraphError",
    "StorageError",
    "StorageCorruptionError",
    "StorageWriteError",
    "LockContentionError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "ValidationError",
    "AnalyticsError",
    "AnalyticsTimeoutError",
]
