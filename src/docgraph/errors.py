"""
Error taxonomy for the documentation knowledge graph.

Storage errors always propagate to callers. Analytics errors are caught by the
recommendation pipeline and downgrade it to its heuristic baseline.
"""


class DocGraphError(Exception):
    """Base class for all knowledge graph errors."""


# =============================================================================
# Storage
# =============================================================================


class StorageError(DocGraphError):
    """Base class for persistence failures."""


class StorageCorruptionError(StorageError):
    """The persisted graph is unreadable or structurally invalid.

    Raised on load. The store never repairs or partially loads a corrupt
    file; the caller decides whether to restore a backup or reinitialize.
    """

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt knowledge graph at {path}: {reason}")


class StorageWriteError(StorageError):
    """A mutation could not be committed. The in-memory graph is unchanged."""


class LockContentionError(StorageError):
    """Another writer already holds the storage directory."""

    def __init__(self, lock_path):
        self.lock_path = lock_path
        super().__init__(
            f"Knowledge graph is locked by another writer: {lock_path}"
        )


# =============================================================================
# Lookups
# =============================================================================


class NodeNotFoundError(DocGraphError, LookupError):
    """A node id did not resolve where one was required."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class EdgeNotFoundError(DocGraphError, LookupError):
    """An edge id did not resolve where one was required."""

    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge not found: {edge_id}")


# =============================================================================
# Validation / analytics
# =============================================================================


class ValidationError(DocGraphError, ValueError):
    """Properties violate the schema for their node or edge type."""

    def __init__(self, kind: str, message: str, fields: list[str] | None = None):
        self.kind = kind
        self.fields = fields or []
        super().__init__(f"Invalid {kind} properties: {message}")


class AnalyticsError(DocGraphError):
    """An aggregation could not produce a trustworthy result."""


class AnalyticsTimeoutError(AnalyticsError):
    """A long-running scan was cancelled or ran past its deadline."""
