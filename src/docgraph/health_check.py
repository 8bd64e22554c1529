"""
Health check module for the knowledge graph.

Provides status checks for diagnostics: storage access, writer lock, graph
integrity and configuration validity, aggregated by ``get_health_status``.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from filelock import FileLock, Timeout

from .config import ConfigurationError, Thresholds, get_default_config_path
from .graph.store import GRAPH_FILENAME, LOCK_FILENAME, GraphStore, scan_document

logger = logging.getLogger(__name__)


def check_storage_health(storage_dir: Path) -> dict[str, Any]:
    """
    Check knowledge graph storage health.

    Returns:
        Dictionary with:
        - status: "healthy" | "missing" | "locked" | "corrupt" | "error"
        - path: Graph file path
        - reason: Explanation
        - writable: Boolean if a writer could open the store now
    """
    graph_path = Path(storage_dir) / GRAPH_FILENAME
    lock_path = Path(storage_dir) / LOCK_FILENAME

    if not graph_path.exists():
        return {
            "status": "missing",
            "path": str(graph_path),
            "reason": "Graph file not written yet",
            "writable": True,
        }

    try:
        document = json.loads(graph_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return {
            "status": "corrupt",
            "path": str(graph_path),
            "reason": f"Unreadable graph file: {e}",
            "writable": False,
        }

    _, _, errors, _ = scan_document(document)
    if errors:
        return {
            "status": "corrupt",
            "path": str(graph_path),
            "reason": errors[0],
            "writable": False,
        }

    try:
        probe = FileLock(str(lock_path), timeout=0)
        probe.acquire()
        probe.release()
    except Timeout:
        return {
            "status": "locked",
            "path": str(graph_path),
            "reason": "Graph is held by another writer",
            "writable": False,
        }
    except OSError as e:
        logger.error(f"Error probing writer lock: {e}")
        return {
            "status": "error",
            "path": str(graph_path),
            "reason": str(e),
            "writable": False,
        }

    return {
        "status": "healthy",
        "path": str(graph_path),
        "reason": "Graph file valid and writer lock available",
        "writable": True,
    }


def check_graph_integrity(store: GraphStore) -> dict[str, Any]:
    """
    Check referential integrity and schema validity of the persisted graph.

    Returns:
        Dictionary with:
        - status: "valid" | "warnings" | "invalid"
        - errors / warnings: lists of findings
        - node_count / edge_count
    """
    report = store.verify_integrity()
    stats = store.get_statistics()
    if not report["valid"]:
        status = "invalid"
    elif report["warnings"]:
        status = "warnings"
    else:
        status = "valid"
    return {
        "status": status,
        "errors": report["errors"],
        "warnings": report["warnings"],
        "node_count": stats["node_count"],
        "edge_count": stats["edge_count"],
    }


def check_config_validity(config_path: Path | None = None) -> dict[str, Any]:
    """
    Check configuration file validity.

    Returns:
        Dictionary with:
        - status: "valid" | "invalid" | "missing"
        - path: Config file path
        - reason: Explanation
    """
    config_path = Path(config_path) if config_path else get_default_config_path()

    if not config_path.exists():
        return {
            "status": "missing",
            "path": str(config_path),
            "reason": "config.yaml not found (defaults in use)",
        }

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {
                "status": "invalid",
                "path": str(config_path),
                "reason": "Top level must be a mapping",
            }
        Thresholds.from_config(data)
        return {
            "status": "valid",
            "path": str(config_path),
            "reason": "Configuration is valid YAML",
        }

    except yaml.YAMLError as e:
        return {
            "status": "invalid",
            "path": str(config_path),
            "reason": f"Invalid YAML: {e}",
        }

    except (ConfigurationError, OSError) as e:
        return {
            "status": "invalid",
            "path": str(config_path),
            "reason": str(e),
        }


def get_health_status(
    storage_dir: Path,
    store: GraphStore | None = None,
    config_path: Path | None = None,
) -> dict[str, Any]:
    """
    Get comprehensive health status.

    Overall status:
    - unhealthy: storage corrupt or errored
    - degraded: storage locked/missing, integrity warnings or invalid config
    - healthy: everything else

    Args:
        storage_dir: Directory holding the graph file
        store: Open store to check integrity against (optional)
        config_path: Config file to validate (default .docgraph/config.yaml)

    Returns:
        Dictionary with overall status, timestamp and per-component checks
    """
    storage = check_storage_health(storage_dir)
    config = check_config_validity(config_path)
    components: dict[str, Any] = {"storage": storage, "config": config}
    if store is not None:
        components["integrity"] = check_graph_integrity(store)

    if storage["status"] in ("corrupt", "error") or (
        store is not None and components["integrity"]["status"] == "invalid"
    ):
        overall = "unhealthy"
    elif (
        storage["status"] in ("locked", "missing")
        or config["status"] == "invalid"
        or (store is not None and components["integrity"]["status"] == "warnings")
    ):
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": components,
    }
