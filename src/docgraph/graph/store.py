"""
Durable node/edge storage for the documentation knowledge graph.

The whole graph lives in one versioned JSON document:

    {"version": "1.0.0",
     "nodes": [{id, type, properties, createdAt, updatedAt}, ...],
     "edges": [{id, type, source, target, properties, createdAt}, ...]}

Writes go through a single writer path (a process-wide file lock plus an
in-process mutex) and are persisted with write-temp, fsync, rename before
the new snapshot is published. Readers always see the last published
snapshot and never block on writers.

Location: .docgraph/memory/knowledge-graph.json (configurable)
"""

import copy
import hashlib
import json
import logging
import os
import shutil
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from ..errors import (
    EdgeNotFoundError,
    LockContentionError,
    NodeNotFoundError,
    StorageCorruptionError,
    StorageWriteError,
    ValidationError,
)
from ..timeutils import Clock, format_timestamp, parse_timestamp, utc_now
from .models import Edge, EdgeFilter, EdgeType, Node, NodeFilter, NodeType
from .schemas import (
    EDGE_ENDPOINTS,
    validate_edge_properties,
    validate_node_properties,
)

logger = logging.getLogger(__name__)

# Schema version of the persisted document
SCHEMA_VERSION = "1.0.0"
SUPPORTED_MAJOR_VERSION = 1

GRAPH_FILENAME = "knowledge-graph.json"
LOCK_FILENAME = "knowledge-graph.lock"
BACKUP_DIRNAME = "backups"
BACKUP_PREFIX = "knowledge-graph-"


# =============================================================================
# Identity
# =============================================================================


def project_node_id(path_key: str, analysis_id: str | None = None) -> str:
    if analysis_id:
        return f"project:{analysis_id}"
    digest = hashlib.sha1(path_key.encode("utf-8")).hexdigest()[:16]
    return f"project:{digest}"


def natural_keys(node_type: NodeType, properties: dict[str, Any]) -> list[str]:
    """Natural keys under which a node is upserted, most specific first."""
    if node_type == NodeType.PROJECT:
        keys = []
        if properties.get("analysis_id"):
            keys.append(f"project:id:{properties['analysis_id']}")
        if properties.get("path_key"):
            keys.append(f"project:path:{properties['path_key']}")
        return keys
    if node_type == NodeType.CONFIGURATION:
        return [f"configuration:{properties['ssg']}"]
    if node_type == NodeType.USER:
        return [f"user:{properties['user_id']}"]
    return []


def _new_node_id(node_type: NodeType, properties: dict[str, Any]) -> str:
    if node_type == NodeType.PROJECT:
        return project_node_id(properties["path_key"], properties.get("analysis_id"))
    if node_type == NodeType.CONFIGURATION:
        return f"configuration:{properties['ssg']}"
    if node_type == NodeType.USER:
        return f"user:{properties['user_id']}"
    return f"{node_type.value}:{uuid.uuid4().hex}"


def _sort_key(item: Node | Edge) -> tuple[str, str]:
    return (item.created_at, item.id)


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class _Snapshot:
    """Committed graph state. Never mutated after publication."""

    nodes: dict[str, Node]
    edges: dict[str, Edge]
    edge_index: dict[tuple[EdgeType, str], tuple[str, ...]]
    keys: dict[str, str]

    @classmethod
    def empty(cls) -> "_Snapshot":
        return cls(nodes={}, edges={}, edge_index={}, keys={})

    @classmethod
    def build(cls, nodes: Iterable[Node], edges: Iterable[Edge]) -> "_Snapshot":
        node_map = {n.id: n for n in nodes}
        edge_map = {e.id: e for e in edges}
        keys = {}
        for node in node_map.values():
            for key in natural_keys(node.type, node.properties):
                keys[key] = node.id
        index: dict[tuple[EdgeType, str], list[str]] = {}
        for edge in edge_map.values():
            index.setdefault((edge.type, edge.source), []).append(edge.id)
        return cls(
            nodes=node_map,
            edges=edge_map,
            edge_index={k: tuple(v) for k, v in index.items()},
            keys=keys,
        )

    def with_node(self, node: Node, previous: Node | None = None) -> "_Snapshot":
        nodes = dict(self.nodes)
        nodes[node.id] = node
        keys = dict(self.keys)
        if previous is not None:
            for key in natural_keys(previous.type, previous.properties):
                if keys.get(key) == previous.id:
                    del keys[key]
        for key in natural_keys(node.type, node.properties):
            keys[key] = node.id
        return _Snapshot(nodes, self.edges, self.edge_index, keys)

    def with_edge(self, edge: Edge) -> "_Snapshot":
        edges = dict(self.edges)
        edges[edge.id] = edge
        index = dict(self.edge_index)
        slot = (edge.type, edge.source)
        index[slot] = index.get(slot, ()) + (edge.id,)
        return _Snapshot(self.nodes, edges, index, self.keys)


class GraphView:
    """Read-only, consistent view of one committed snapshot.

    All results are independent copies ordered by ``(created_at, id)``.
    """

    def __init__(self, snapshot: _Snapshot):
        self._snapshot = snapshot

    def get_node(self, node_id: str) -> Node | None:
        node = self._snapshot.nodes.get(node_id)
        return copy.deepcopy(node) if node is not None else None

    def get_edge(self, edge_id: str) -> Edge | None:
        edge = self._snapshot.edges.get(edge_id)
        return copy.deepcopy(edge) if edge is not None else None

    def lookup(self, node_type: NodeType, properties: dict[str, Any]) -> Node | None:
        """Find a node by its natural key (project path/analysis id, ssg, user id)."""
        for key in natural_keys(NodeType(node_type), properties):
            node_id = self._snapshot.keys.get(key)
            if node_id is not None:
                return self.get_node(node_id)
        return None

    def find_nodes(self, filter: NodeFilter | None = None, **criteria: Any) -> list[Node]:
        flt = filter or NodeFilter(**criteria)
        if flt.ids is not None:
            candidates = (self._snapshot.nodes[i] for i in flt.ids if i in self._snapshot.nodes)
        else:
            candidates = self._snapshot.nodes.values()
        found = [n for n in candidates if flt.matches(n)]
        return [copy.deepcopy(n) for n in sorted(found, key=_sort_key)]

    def find_edges(self, filter: EdgeFilter | None = None, **criteria: Any) -> list[Edge]:
        flt = filter or EdgeFilter(**criteria)
        if flt.type is not None and flt.source is not None:
            ids = self._snapshot.edge_index.get((EdgeType(flt.type), flt.source), ())
            candidates = (self._snapshot.edges[i] for i in ids)
        else:
            candidates = self._snapshot.edges.values()
        found = [e for e in candidates if flt.matches(e)]
        return [copy.deepcopy(e) for e in sorted(found, key=_sort_key)]

    def edges_from(self, edge_type: EdgeType, source_id: str) -> list[Edge]:
        return self.find_edges(EdgeFilter(type=EdgeType(edge_type), source=source_id))

    def get_all_nodes(self, limit: int | None = None) -> list[Node]:
        nodes = sorted(self._snapshot.nodes.values(), key=_sort_key)
        if limit is not None:
            nodes = nodes[:limit]
        return [copy.deepcopy(n) for n in nodes]

    def get_all_edges(self, limit: int | None = None) -> list[Edge]:
        edges = sorted(self._snapshot.edges.values(), key=_sort_key)
        if limit is not None:
            edges = edges[:limit]
        return [copy.deepcopy(e) for e in edges]

    @property
    def node_count(self) -> int:
        return len(self._snapshot.nodes)

    @property
    def edge_count(self) -> int:
        return len(self._snapshot.edges)


# =============================================================================
# Document scanning
# =============================================================================


def _parse_major(version: Any) -> int | None:
    try:
        return int(str(version).split(".")[0])
    except (TypeError, ValueError):
        return None


def scan_document(document: Any) -> tuple[list[Node], list[Edge], list[str], list[str]]:
    """Parse and check a persisted document without raising.

    Returns:
        (nodes, edges, errors, warnings). Any error means the document
        must not be loaded.
    """
    errors: list[str] = []
    warnings: list[str] = []
    nodes: list[Node] = []
    edges: list[Edge] = []

    if not isinstance(document, dict):
        return nodes, edges, ["document is not a JSON object"], warnings

    major = _parse_major(document.get("version"))
    if major is None:
        errors.append(f"missing or invalid version: {document.get('version')!r}")
    elif major > SUPPORTED_MAJOR_VERSION:
        errors.append(
            f"unsupported version {document.get('version')} "
            f"(this loader understands {SUPPORTED_MAJOR_VERSION}.x)"
        )
        return nodes, edges, errors, warnings

    raw_nodes = document.get("nodes")
    raw_edges = document.get("edges")
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        errors.append("'nodes' and 'edges' must both be lists")
        return nodes, edges, errors, warnings

    seen_nodes: dict[str, Node] = {}
    for position, raw in enumerate(raw_nodes):
        try:
            node = Node.from_dict(raw)
            node.properties = validate_node_properties(node.type, node.properties)
        except (KeyError, TypeError, ValueError) as e:
            errors.append(f"node #{position} is invalid: {e}")
            continue
        if node.id in seen_nodes:
            errors.append(f"duplicate node id: {node.id}")
            continue
        seen_nodes[node.id] = node
        nodes.append(node)

    seen_edges: set[str] = set()
    for position, raw in enumerate(raw_edges):
        try:
            edge = Edge.from_dict(raw)
            edge.properties = validate_edge_properties(edge.type, edge.properties)
        except (KeyError, TypeError, ValueError) as e:
            errors.append(f"edge #{position} is invalid: {e}")
            continue
        if edge.id in seen_edges:
            errors.append(f"duplicate edge id: {edge.id}")
            continue
        seen_edges.add(edge.id)
        for end in (edge.source, edge.target):
            if end not in seen_nodes:
                errors.append(f"edge {edge.id} references missing node: {end}")
        source, target = seen_nodes.get(edge.source), seen_nodes.get(edge.target)
        expected = EDGE_ENDPOINTS[edge.type]
        if source and target and (source.type, target.type) != expected:
            warnings.append(
                f"edge {edge.id} ({edge.type.value}) connects "
                f"{source.type.value} -> {target.type.value}"
            )
        if source and source.archived:
            warnings.append(f"edge {edge.id} starts at archived node {source.id}")
        edges.append(edge)

    return nodes, edges, errors, warnings


# =============================================================================
# Store
# =============================================================================


class GraphStore:
    """Single-writer, many-reader knowledge graph persisted as JSON."""

    def __init__(
        self,
        storage_dir: Path | str,
        *,
        read_only: bool = False,
        backup_on_write: bool = True,
        backup_keep: int = 10,
        lock_timeout: float = 0,
        clock: Clock = utc_now,
    ):
        """
        Open (and load) a graph store.

        Args:
            storage_dir: Directory holding knowledge-graph.json
            read_only: Open without taking the writer lock; writes are rejected
            backup_on_write: Copy the previous file to backups/ before each write
            backup_keep: Number of backups to retain
            lock_timeout: Seconds to wait for the writer lock (0 = fail fast)
            clock: Source of "now" for timestamps

        Raises:
            LockContentionError: If another writer holds the directory
            StorageCorruptionError: If the persisted graph is invalid
        """
        self.storage_dir = Path(storage_dir)
        self.graph_path = self.storage_dir / GRAPH_FILENAME
        self.lock_path = self.storage_dir / LOCK_FILENAME
        self.backup_dir = self.storage_dir / BACKUP_DIRNAME
        self.read_only = read_only
        self.backup_on_write = backup_on_write
        self.backup_keep = backup_keep
        self.clock = clock

        self._write_lock = threading.Lock()
        self._file_lock: FileLock | None = None
        self._closed = False

        if not read_only:
            self._acquire_file_lock(lock_timeout)

        try:
            self._snapshot = self._load()
        except Exception:
            self._release_file_lock()
            raise

        logger.info(
            f"Opened knowledge graph at {self.graph_path} "
            f"({len(self._snapshot.nodes)} nodes, {len(self._snapshot.edges)} edges"
            f"{', read-only' if read_only else ''})"
        )

    @classmethod
    def from_config(cls, config: dict[str, Any], **kwargs: Any) -> "GraphStore":
        """Open the store described by the ``storage`` config section."""
        from ..config import get_storage_dir

        storage = config.get("storage", {})
        return cls(
            get_storage_dir(config),
            backup_on_write=storage.get("backup_on_write", True),
            backup_keep=storage.get("backup_keep", 10),
            lock_timeout=storage.get("lock_timeout", 0),
            **kwargs,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _acquire_file_lock(self, timeout: float) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_path), timeout=timeout)
        try:
            lock.acquire()
        except Timeout:
            logger.error(f"Writer lock held by another process: {self.lock_path}")
            raise LockContentionError(self.lock_path)
        self._file_lock = lock

    def _release_file_lock(self) -> None:
        if self._file_lock is not None:
            self._file_lock.release()
            self._file_lock = None

    def close(self) -> None:
        """Release the writer lock. The store rejects writes afterwards."""
        with self._write_lock:
            self._release_file_lock()
            self._closed = True

    def __enter__(self) -> "GraphStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def now(self) -> datetime:
        return self.clock()

    def timestamp(self) -> str:
        return format_timestamp(self.clock())

    # =========================================================================
    # Loading
    # =========================================================================

    def _read_document(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruptionError(path, f"unreadable: {e}") from e

    def _load_path(self, path: Path) -> _Snapshot:
        document = self._read_document(path)
        nodes, edges, errors, warnings = scan_document(document)
        if errors:
            logger.error(f"Refusing to load {path}: {errors[0]}")
            raise StorageCorruptionError(path, "; ".join(errors))
        for warning in warnings:
            logger.warning(f"{path}: {warning}")
        return _Snapshot.build(nodes, edges)

    def _load(self) -> _Snapshot:
        if not self.graph_path.exists():
            logger.debug(f"No graph file yet at {self.graph_path}, starting empty")
            return _Snapshot.empty()
        return self._load_path(self.graph_path)

    def reload(self) -> None:
        """Re-read the graph file and publish it as the current snapshot.

        Raises:
            StorageCorruptionError: If the file is invalid (snapshot unchanged)
        """
        with self._write_lock:
            self._snapshot = self._load()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _ensure_writable(self) -> None:
        if self.read_only:
            raise StorageWriteError("Store was opened read-only")
        if self._closed:
            raise StorageWriteError("Store is closed")

    def _serialize(self, snapshot: _Snapshot) -> str:
        document = {
            "version": SCHEMA_VERSION,
            "nodes": [n.to_dict() for n in snapshot.nodes.values()],
            "edges": [e.to_dict() for e in snapshot.edges.values()],
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    def _backup(self) -> None:
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            name = f"{BACKUP_PREFIX}{time.time_ns():020d}.json"
            shutil.copy2(self.graph_path, self.backup_dir / name)
            backups = self.list_backups()
            for old in backups[: max(0, len(backups) - self.backup_keep)]:
                old.unlink()
        except OSError as e:
            logger.warning(f"Failed to back up {self.graph_path}: {e}")

    def _fsync_dir(self) -> None:
        if os.name != "posix":
            return
        fd = os.open(self.storage_dir, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def _persist(self, snapshot: _Snapshot) -> None:
        payload = self._serialize(snapshot)
        tmp_path = self.graph_path.with_name(f".{GRAPH_FILENAME}.tmp-{os.getpid()}")
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            if self.backup_on_write and self.graph_path.exists():
                self._backup()
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.graph_path)
            self._fsync_dir()
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            logger.error(f"Failed to write knowledge graph: {e}")
            raise StorageWriteError(f"Failed to write {self.graph_path}: {e}") from e

    def _commit(self, snapshot: _Snapshot) -> None:
        """Persist then publish. Caller holds the write lock."""
        self._persist(snapshot)
        self._snapshot = snapshot

    # =========================================================================
    # Reads
    # =========================================================================

    def view(self) -> GraphView:
        """Consistent view of the last committed snapshot."""
        return GraphView(self._snapshot)

    def get_node(self, node_id: str) -> Node | None:
        return self.view().get_node(node_id)

    def get_edge(self, edge_id: str) -> Edge | None:
        return self.view().get_edge(edge_id)

    def require_node(self, node_id: str) -> Node:
        node = self.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def require_edge(self, edge_id: str) -> Edge:
        edge = self.get_edge(edge_id)
        if edge is None:
            raise EdgeNotFoundError(edge_id)
        return edge

    def lookup(self, node_type: NodeType, properties: dict[str, Any]) -> Node | None:
        return self.view().lookup(node_type, properties)

    def find_nodes(self, filter: NodeFilter | None = None, **criteria: Any) -> list[Node]:
        return self.view().find_nodes(filter, **criteria)

    def find_edges(self, filter: EdgeFilter | None = None, **criteria: Any) -> list[Edge]:
        return self.view().find_edges(filter, **criteria)

    def edges_from(self, edge_type: EdgeType, source_id: str) -> list[Edge]:
        return self.view().edges_from(edge_type, source_id)

    def get_all_nodes(self, limit: int | None = None) -> list[Node]:
        return self.view().get_all_nodes(limit)

    def get_all_edges(self, limit: int | None = None) -> list[Edge]:
        return self.view().get_all_edges(limit)

    # =========================================================================
    # Writes
    # =========================================================================

    def add_node(self, node_type: NodeType, properties: dict[str, Any]) -> Node:
        """
        Add a node, or upsert it when its natural key already exists.

        Projects are keyed by analysis id or normalized path, configurations by
        ssg, users by user id. On upsert the supplied properties are merged
        over the stored ones (last write wins) and ``updated_at`` advances.

        Raises:
            ValidationError: If the properties violate the type's schema
            StorageWriteError: If the write could not be committed
        """
        node_type = NodeType(node_type)
        validated = validate_node_properties(node_type, properties)
        with self._write_lock:
            self._ensure_writable()
            existing = self._lookup_locked(node_type, validated)
            if existing is not None:
                return self._update_locked(existing, properties)
            return self._insert_locked(node_type, validated)

    def upsert_node(
        self,
        node_type: NodeType,
        key_properties: dict[str, Any],
        merge: Callable[[dict[str, Any] | None], dict[str, Any]],
    ) -> tuple[Node, bool]:
        """
        Look up a node by natural key and create or merge it atomically.

        ``merge`` receives a copy of the stored properties (None when no node
        matches ``key_properties``) and returns the properties to write. The
        lookup and the write happen under the writer lock, so concurrent
        callers always merge into the latest committed node.

        Returns:
            (node, created)

        Raises:
            ValidationError: If the merged properties violate the type's schema
            StorageWriteError: If the write could not be committed
        """
        node_type = NodeType(node_type)
        with self._write_lock:
            self._ensure_writable()
            existing = self._lookup_locked(node_type, key_properties)
            if existing is None:
                validated = validate_node_properties(node_type, merge(None))
                return self._insert_locked(node_type, validated), True
            updates = merge(copy.deepcopy(existing.properties))
            return self._update_locked(existing, updates), False

    def _lookup_locked(self, node_type: NodeType, properties: dict[str, Any]) -> Node | None:
        for key in natural_keys(node_type, properties):
            node_id = self._snapshot.keys.get(key)
            if node_id is not None:
                return self._snapshot.nodes[node_id]
        return None

    def _insert_locked(self, node_type: NodeType, validated: dict[str, Any]) -> Node:
        now = self.timestamp()
        node = Node(
            id=_new_node_id(node_type, validated),
            type=node_type,
            properties=validated,
            created_at=now,
            updated_at=now,
        )
        if node.id in self._snapshot.nodes:
            raise ValidationError(
                f"{node_type.value} node", f"id already in use: {node.id}"
            )
        self._commit(self._snapshot.with_node(node))
        logger.debug(f"Added {node_type.value} node {node.id}")
        return copy.deepcopy(node)

    def update_node(self, node_id: str, properties: dict[str, Any]) -> Node:
        """
        Merge properties into an existing node.

        Raises:
            NodeNotFoundError: If the node does not exist
            ValidationError: If the merged properties violate the schema
        """
        with self._write_lock:
            self._ensure_writable()
            existing = self._snapshot.nodes.get(node_id)
            if existing is None:
                raise NodeNotFoundError(node_id)
            return self._update_locked(existing, properties)

    def modify_node(
        self, node_id: str, mutate: Callable[[dict[str, Any]], dict[str, Any]]
    ) -> Node:
        """
        Read-modify-write a node under the writer lock.

        ``mutate`` receives a copy of the current properties and returns the
        properties to merge.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        with self._write_lock:
            self._ensure_writable()
            existing = self._snapshot.nodes.get(node_id)
            if existing is None:
                raise NodeNotFoundError(node_id)
            updates = mutate(copy.deepcopy(existing.properties))
            return self._update_locked(existing, updates)

    def _update_locked(self, existing: Node, properties: dict[str, Any]) -> Node:
        merged = {**copy.deepcopy(existing.properties), **copy.deepcopy(properties)}
        validated = validate_node_properties(existing.type, merged)
        for key in natural_keys(existing.type, validated):
            owner = self._snapshot.keys.get(key)
            if owner is not None and owner != existing.id:
                raise ValidationError(
                    f"{existing.type.value} node",
                    f"natural key {key} already belongs to {owner}",
                )
        node = Node(
            id=existing.id,
            type=existing.type,
            properties=validated,
            created_at=existing.created_at,
            updated_at=max(self.timestamp(), existing.updated_at),
        )
        self._commit(self._snapshot.with_node(node, previous=existing))
        logger.debug(f"Updated {existing.type.value} node {node.id}")
        return copy.deepcopy(node)

    def archive_node(self, node_id: str, reason: str | None = None) -> Node:
        """Soft-archive a node. Nodes are never hard-deleted."""
        return self.update_node(
            node_id,
            {"archived": True, "archived_at": self.timestamp(), "archive_reason": reason},
        )

    def _build_edge(
        self,
        edge_type: EdgeType,
        source: str,
        target: str,
        properties: dict[str, Any],
        created_at: datetime | str | None,
    ) -> Edge:
        validated = validate_edge_properties(edge_type, properties)
        source_node = self._snapshot.nodes.get(source)
        target_node = self._snapshot.nodes.get(target)
        if source_node is None:
            raise NodeNotFoundError(source)
        if target_node is None:
            raise NodeNotFoundError(target)
        expected = EDGE_ENDPOINTS[edge_type]
        if (source_node.type, target_node.type) != expected:
            raise ValidationError(
                f"{edge_type.value} edge",
                f"must connect {expected[0].value} -> {expected[1].value}, "
                f"got {source_node.type.value} -> {target_node.type.value}",
            )
        stamp = (
            format_timestamp(parse_timestamp(created_at))
            if created_at is not None
            else self.timestamp()
        )
        return Edge(
            id=uuid.uuid4().hex,
            type=edge_type,
            source=source,
            target=target,
            properties=validated,
            created_at=stamp,
        )

    def add_edge(
        self,
        edge_type: EdgeType,
        source: str,
        target: str,
        properties: dict[str, Any] | None = None,
        created_at: datetime | str | None = None,
    ) -> Edge:
        """
        Append a directed edge between two existing nodes.

        Args:
            created_at: Authoritative event time (defaults to now)

        Raises:
            NodeNotFoundError: If source or target does not exist
            ValidationError: If properties or endpoint types are invalid
            StorageWriteError: If the write could not be committed
        """
        edge, _ = self.find_or_add_edge(edge_type, source, target, properties, created_at)
        return edge

    def find_or_add_edge(
        self,
        edge_type: EdgeType,
        source: str,
        target: str,
        properties: dict[str, Any] | None = None,
        created_at: datetime | str | None = None,
        duplicate_of: Callable[[Edge], bool] | None = None,
    ) -> tuple[Edge, bool]:
        """
        Atomically return an existing duplicate edge or append a new one.

        ``duplicate_of`` is evaluated under the writer lock against the edges
        of the same type leaving ``source``; the first match is returned
        instead of writing.

        Returns:
            (edge, created)
        """
        edge_type = EdgeType(edge_type)
        with self._write_lock:
            self._ensure_writable()
            if duplicate_of is not None:
                for edge in GraphView(self._snapshot).edges_from(edge_type, source):
                    if duplicate_of(edge):
                        logger.debug(f"Suppressed duplicate {edge_type.value} edge {edge.id}")
                        return edge, False
            edge = self._build_edge(edge_type, source, target, properties or {}, created_at)
            self._commit(self._snapshot.with_edge(edge))
            logger.debug(f"Added {edge_type.value} edge {edge.id}: {source} -> {target}")
            return copy.deepcopy(edge), True

    # =========================================================================
    # Maintenance
    # =========================================================================

    def list_backups(self) -> list[Path]:
        """Backups, oldest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"))

    def restore_from_backup(self, name: str | None = None) -> Path:
        """
        Replace the current graph with a backup (newest by default).

        Raises:
            FileNotFoundError: If no matching backup exists
            StorageCorruptionError: If the backup itself is invalid
        """
        with self._write_lock:
            self._ensure_writable()
            backups = self.list_backups()
            if name is not None:
                backups = [b for b in backups if b.name == name]
            if not backups:
                raise FileNotFoundError(f"No backup found in {self.backup_dir}")
            chosen = backups[-1]
            snapshot = self._load_path(chosen)
            self._commit(snapshot)
            logger.info(f"Restored knowledge graph from backup: {chosen.name}")
            return chosen

    def verify_integrity(self) -> dict[str, Any]:
        """
        Check the on-disk document without loading it.

        Returns:
            Dictionary with valid (bool), errors and warnings lists
        """
        if not self.graph_path.exists():
            return {"valid": True, "errors": [], "warnings": ["graph file not written yet"]}
        try:
            document = self._read_document(self.graph_path)
        except StorageCorruptionError as e:
            return {"valid": False, "errors": [e.reason], "warnings": []}
        nodes, edges, errors, warnings = scan_document(document)
        committed = self._snapshot
        if {n.id for n in nodes} != set(committed.nodes) or {e.id for e in edges} != set(
            committed.edges
        ):
            warnings.append("on-disk graph differs from the loaded snapshot")
        return {"valid": not errors, "errors": errors, "warnings": warnings}

    def get_statistics(self) -> dict[str, Any]:
        """Get graph and storage statistics for diagnostics."""
        snapshot = self._snapshot
        nodes_by_type: dict[str, int] = {}
        for node in snapshot.nodes.values():
            nodes_by_type[node.type.value] = nodes_by_type.get(node.type.value, 0) + 1
        edges_by_type: dict[str, int] = {}
        for edge in snapshot.edges.values():
            edges_by_type[edge.type.value] = edges_by_type.get(edge.type.value, 0) + 1

        stats: dict[str, Any] = {
            "schema_version": SCHEMA_VERSION,
            "storage_path": str(self.graph_path),
            "storage_exists": self.graph_path.exists(),
            "node_count": len(snapshot.nodes),
            "edge_count": len(snapshot.edges),
            "nodes_by_type": dict(sorted(nodes_by_type.items())),
            "edges_by_type": dict(sorted(edges_by_type.items())),
            "backup_count": len(self.list_backups()),
        }
        if stats["storage_exists"]:
            stat = self.graph_path.stat()
            stats["file_size_bytes"] = stat.st_size
            stats["last_modified"] = format_timestamp(
                datetime.fromtimestamp(stat.st_mtime).astimezone()
            )
        return stats

    def export_json(self) -> str:
        """Export the committed graph with metadata, for inspection."""
        view = self.view()
        nodes = view.get_all_nodes()
        edges = view.get_all_edges()
        return json.dumps(
            {
                "metadata": {
                    "version": SCHEMA_VERSION,
                    "exportDate": self.timestamp(),
                    "nodeCount": len(nodes),
                    "edgeCount": len(edges),
                },
                "nodes": [n.to_dict() for n in nodes],
                "edges": [e.to_dict() for e in edges],
            },
            indent=2,
            ensure_ascii=False,
        )
