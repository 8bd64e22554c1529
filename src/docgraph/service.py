"""
DocGraph - producer/query facade over the knowledge graph.

Composes the store, resolver, tracker, analytics, preferences and
recommendation engine around one injected ``GraphStore``. Tools consume this
facade; they never touch the storage file directly.

Usage:
    with open_graph() as graph:
        project = graph.create_or_update_project(descriptor)
        graph.record_deployment(project.id, "mkdocs", success=True)
        print(graph.recommend(project.id).to_json())
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .analytics import AnalyticsEngine
from .config import Thresholds, load_config
from .events import EventTracker
from .graph.models import Edge, EdgeType, Node, NodeType
from .graph.store import GraphStore
from .preferences import PreferenceManager
from .recommendation import Recommendation, RecommendationEngine
from .resolver import EntityResolver, ProjectDescriptor
from .similarity import rank_similar_projects
from .timeutils import Deadline

logger = logging.getLogger(__name__)

# Edge weight of a failed deployment when ranking deployment options
FAILED_DEPLOYMENT_WEIGHT = 0.5
MAX_RANKING_REASONS = 3


@dataclass
class RankedSSG:
    ssg: str
    confidence: float
    success_rate: float
    deployments: int
    reasoning: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ssg": self.ssg,
            "confidence": self.confidence,
            "success_rate": self.success_rate,
            "deployments": self.deployments,
            "reasoning": list(self.reasoning),
        }


@dataclass
class ProjectContext:
    """Historical context for a project path."""

    project: Node | None = None
    previous_analyses: int = 0
    last_analyzed: str | None = None
    known_technologies: list[str] = field(default_factory=list)
    similar_projects: list[dict[str, Any]] = field(default_factory=list)
    history: list[Edge] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "project": self.project.to_dict() if self.project else None,
            "previous_analyses": self.previous_analyses,
            "last_analyzed": self.last_analyzed,
            "known_technologies": list(self.known_technologies),
            "similar_projects": list(self.similar_projects),
            "history": [e.to_dict() for e in self.history],
        }


class DocGraph:
    """Facade implementing the producer and query API."""

    def __init__(self, store: GraphStore, config: dict[str, Any] | None = None):
        config = config or {}
        self.store = store
        self.config = config
        self.thresholds = Thresholds.from_config(config)
        retention_days = config.get("analytics", {}).get("retention_days")
        rec = config.get("recommendation", {})

        self.resolver = EntityResolver(store, self.thresholds)
        self.tracker = EventTracker(store, self.thresholds)
        self.analytics = AnalyticsEngine.from_config(store, config, self.thresholds)
        self.preferences = PreferenceManager(store, self.thresholds, retention_days)
        self.engine = RecommendationEngine(
            store,
            self.analytics,
            self.preferences,
            self.thresholds,
            heuristic_confidence=rec.get("heuristic_confidence", 0.85),
            fallback_confidence=rec.get("fallback_confidence", 0.70),
        )

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "DocGraph":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # Producer API
    # =========================================================================

    def create_or_update_project(self, descriptor: ProjectDescriptor | dict) -> Node:
        """Resolve a scanner observation (descriptor or raw analysis dict)."""
        if isinstance(descriptor, dict):
            descriptor = ProjectDescriptor.from_analysis(descriptor)
        return self.resolver.resolve(descriptor)

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
        """Record a deployment, tracking personal usage when a user is given."""
        edge, created = self.tracker.record(
            project_id,
            ssg,
            success,
            metadata=metadata,
            idempotency_token=idempotency_token,
            timestamp=timestamp,
            user_id=user_id,
        )
        if created and user_id is not None:
            project = self.store.get_node(project_id)
            self.preferences.track_ssg_usage(
                user_id,
                edge.properties["ssg"],
                edge.properties["success"],
                timestamp=edge.created_at,
                project_type=project.properties.get("ecosystem") if project else None,
            )
        return edge

    def get_deployment_recommendations(
        self, project_id: str, deadline: Deadline | None = None
    ) -> list[RankedSSG]:
        """
        Rank SSGs by the outcomes of similar projects' deployments.

        confidence = mean edge weight (1.0 success, 0.5 failure) x success rate.
        Unknown projects yield an empty list.
        """
        project = self.store.get_node(project_id)
        if project is None or project.type != NodeType.PROJECT:
            return []
        similar = rank_similar_projects(
            project, self.store.find_nodes(type=NodeType.PROJECT), limit=None
        )
        names = {s.project.id: s.project.properties.get("name") for s in similar}
        stats = self.analytics.get_all_statistics(list(names), deadline)

        reasons: dict[str, list[str]] = {}
        for edge in self.analytics.scan_deployments(self.store.view(), list(names), deadline):
            if edge.properties.get("success"):
                line = f"Successfully used by similar project {names[edge.source]}"
                bucket = reasons.setdefault(edge.properties["ssg"], [])
                if line not in bucket:
                    bucket.append(line)

        ranked = []
        for ssg, s in stats.items():
            weight = (s.successes + FAILED_DEPLOYMENT_WEIGHT * s.failures) / s.total
            ranked.append(
                RankedSSG(
                    ssg=ssg,
                    confidence=round(weight * s.rate, 4),
                    success_rate=round(s.rate, 4),
                    deployments=s.total,
                    reasoning=reasons.get(ssg, [])[:MAX_RANKING_REASONS],
                )
            )
        ranked.sort(key=lambda r: (-r.confidence, -r.success_rate, r.ssg))
        return ranked

    def get_project_context(self, path: str | Path) -> ProjectContext:
        """Previous analyses, known technologies, similar projects and history."""
        project = self.resolver.find_project(path=path)
        if project is None:
            return ProjectContext()
        similar = rank_similar_projects(project, self.store.find_nodes(type=NodeType.PROJECT))
        return ProjectContext(
            project=project,
            previous_analyses=project.properties.get("analysis_count", 0),
            last_analyzed=project.properties.get("last_analyzed"),
            known_technologies=list(project.properties.get("technologies") or []),
            similar_projects=[s.to_dict() for s in similar],
            history=self.store.edges_from(EdgeType.PROJECT_DEPLOYED_WITH, project.id),
        )

    def recommend(
        self,
        project_id: str | None = None,
        *,
        ecosystem: str | None = None,
        priority: str | None = None,
        user_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Recommendation:
        return self.engine.recommend(
            project_id,
            ecosystem=ecosystem,
            priority=priority,
            user_id=user_id,
            deadline=deadline,
        )

    def record_recommendation(self, project_id: str, recommendation: Recommendation) -> Edge:
        """Store a recommendation as a project_recommended edge."""
        config = self.tracker.ensure_configuration(recommendation.recommended)
        return self.store.add_edge(
            EdgeType.PROJECT_RECOMMENDED,
            project_id,
            config.id,
            {
                "ssg": recommendation.recommended,
                "confidence": recommendation.confidence,
                "reasoning": list(recommendation.reasoning),
            },
        )

    # =========================================================================
    # Query API
    # =========================================================================

    def find_nodes(self, *args: Any, **kwargs: Any) -> list[Node]:
        return self.store.find_nodes(*args, **kwargs)

    def find_edges(self, *args: Any, **kwargs: Any) -> list[Edge]:
        return self.store.find_edges(*args, **kwargs)

    def get_all_nodes(self) -> list[Node]:
        return self.store.get_all_nodes()

    def get_all_edges(self) -> list[Edge]:
        return self.store.get_all_edges()

    def get_statistics(self) -> dict[str, Any]:
        """Storage counts plus deployment summary."""
        stats = self.store.get_statistics()
        report = self.analytics.generate_report()
        stats["deployments"] = report["summary"]
        return stats


def open_graph(
    config: dict[str, Any] | None = None,
    read_only: bool = False,
    **store_kwargs: Any,
) -> DocGraph:
    """
    Build the process-wide DocGraph from configuration.

    Args:
        config: Configuration from load_config() (loaded when None)
        read_only: Open without the writer lock
        **store_kwargs: Extra GraphStore arguments (e.g. clock)

    Raises:
        LockContentionError: If another writer holds the storage directory
        StorageCorruptionError: If the persisted graph is invalid
    """
    config = config if config is not None else load_config()
    store = GraphStore.from_config(config, read_only=read_only, **store_kwargs)
    return DocGraph(store, config)
