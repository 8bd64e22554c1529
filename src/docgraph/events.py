"""
Deployment event tracking.

Each deployment attempt becomes one append-only ``project_deployed_with``
edge from the project to its SSG configuration node. Retries are suppressed:

- with an idempotency token: the same token on the same project within the
  dedup window (default 5 minutes) yields the original edge
- without a token: an identical (project, ssg, success, timestamp rounded to
  the second) tuple yields the original edge

The duplicate check and the insert run atomically under the store's writer
lock, so concurrent retries cannot both land.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from .config import Thresholds
from .errors import NodeNotFoundError, ValidationError
from .graph.models import Edge, EdgeFilter, EdgeType, Node, NodeType
from .graph.schemas import NAMESPACE_SEPARATOR
from .graph.store import GraphStore
from .timeutils import format_timestamp, parse_timestamp, truncate_to_second

logger = logging.getLogger(__name__)

# Metadata keys stored as first-class deployment properties
_METADATA_ALIASES = {
    "build_time": "build_time",
    "buildTime": "build_time",
    "error_message": "error_message",
    "errorMessage": "error_message",
    "deployment_url": "deployment_url",
    "deploymentUrl": "deployment_url",
}

METADATA_NAMESPACE = "meta"


def normalize_ssg(ssg: str) -> str:
    value = (ssg or "").strip().lower()
    if not value:
        raise ValidationError("deployment", "ssg must not be blank", ["ssg"])
    return value


def ensure_configuration(store: GraphStore, ssg: str) -> Node:
    """Find or lazily create the configuration node for an SSG."""
    ssg = normalize_ssg(ssg)
    existing = store.lookup(NodeType.CONFIGURATION, {"ssg": ssg})
    if existing is not None:
        return existing
    node = store.add_node(
        NodeType.CONFIGURATION, {"ssg": ssg, "label": f"{ssg} configuration"}
    )
    logger.info(f"Created configuration node {node.id}")
    return node


def _metadata_properties(metadata: dict[str, Any] | None) -> dict[str, Any]:
    props: dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        if key in _METADATA_ALIASES:
            props[_METADATA_ALIASES[key]] = value
        elif NAMESPACE_SEPARATOR in key:
            props[key] = value
        else:
            props[f"{METADATA_NAMESPACE}{NAMESPACE_SEPARATOR}{key}"] = value
    return props


class EventTracker:
    """Idempotently records deployment outcomes."""

    def __init__(self, store: GraphStore, thresholds: Thresholds | None = None):
        self.store = store
        self.thresholds = thresholds or Thresholds()

    @property
    def dedup_window(self) -> timedelta:
        return timedelta(seconds=self.thresholds.dedup_window_seconds)

    def ensure_configuration(self, ssg: str) -> Node:
        return ensure_configuration(self.store, ssg)

    def _duplicate_predicate(
        self,
        config_id: str,
        success: bool,
        when: datetime,
        idempotency_token: str | None,
    ):
        window = self.dedup_window

        if idempotency_token is not None:

            def same_token(edge: Edge) -> bool:
                if edge.properties.get("idempotency_token") != idempotency_token:
                    return False
                return abs(parse_timestamp(edge.created_at) - when) <= window

            return same_token

        second = truncate_to_second(when)

        def same_tuple(edge: Edge) -> bool:
            return (
                edge.properties.get("idempotency_token") is None
                and edge.target == config_id
                and edge.properties.get("success") == success
                and truncate_to_second(parse_timestamp(edge.created_at)) == second
            )

        return same_tuple

    def record_deployment(
        self,
        project_id: str,
        ssg: str,
        success: bool,
        metadata: dict[str, Any] | None = None,
        idempotency_token: str | None = None,
        timestamp: datetime | str | None = None,
        user_id: str | None = None,
    ) -> Edge:
        edge, _ = self.record(
            project_id, ssg, success, metadata, idempotency_token, timestamp, user_id
        )
        return edge

    def record(
        self,
        project_id: str,
        ssg: str,
        success: bool,
        metadata: dict[str, Any] | None = None,
        idempotency_token: str | None = None,
        timestamp: datetime | str | None = None,
        user_id: str | None = None,
    ) -> tuple[Edge, bool]:
        """
        Record one deployment attempt.

        Args:
            project_id: Existing project node id
            ssg: Static site generator name (case-insensitive)
            success: Deployment outcome
            metadata: build_time, error_message, deployment_url; other keys
                are stored namespaced under ``meta:``
            idempotency_token: Caller key for retry suppression
            timestamp: Event time (defaults to now); becomes the edge createdAt
            user_id: Optional user who deployed

        Returns:
            (edge, created): the original edge and False for a duplicate

        Raises:
            NodeNotFoundError: If project_id is not a project node
            ValidationError: If ssg or metadata is invalid
        """
        ssg = normalize_ssg(ssg)
        project = self.store.get_node(project_id)
        if project is None or project.type != NodeType.PROJECT:
            raise NodeNotFoundError(project_id)

        config = self.ensure_configuration(ssg)
        when = parse_timestamp(timestamp) if timestamp is not None else self.store.now()
        stamp = format_timestamp(when)

        properties = {
            **_metadata_properties(metadata),
            "ssg": ssg,
            "success": bool(success),
            "timestamp": stamp,
            "idempotency_token": idempotency_token,
            "user_id": user_id,
        }
        edge, created = self.store.find_or_add_edge(
            EdgeType.PROJECT_DEPLOYED_WITH,
            project.id,
            config.id,
            properties,
            created_at=stamp,
            duplicate_of=self._duplicate_predicate(
                config.id, bool(success), when, idempotency_token
            ),
        )
        if created:
            logger.info(
                f"Recorded {'successful' if success else 'failed'} {ssg} "
                f"deployment for {project.id}"
            )
        else:
            logger.info(f"Duplicate deployment suppressed for {project.id} ({ssg})")
        return edge, created

    def get_deployments(
        self,
        project_id: str | None = None,
        ssg: str | None = None,
        since: datetime | str | None = None,
    ) -> list[Edge]:
        """Deployment edges ordered by event time."""
        flt = EdgeFilter(
            type=EdgeType.PROJECT_DEPLOYED_WITH,
            source=project_id,
            properties={"ssg": normalize_ssg(ssg)} if ssg else None,
            since=format_timestamp(parse_timestamp(since)) if since is not None else None,
        )
        return self.store.find_edges(flt)
