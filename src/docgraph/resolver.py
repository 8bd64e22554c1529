"""
Entity resolution for repeated project observations.

Maps a scanner observation onto one canonical project node, keyed by an
explicit analysis id when supplied, otherwise by the normalized, case-folded
absolute path. Re-observing a project merges into the existing node:

- list properties: set union (sorted)
- monotonic counters: max
- scalars: last write wins, with the overwritten value appended to a
  bounded audit history
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import Thresholds
from .graph.models import EdgeType, Node, NodeType
from .graph.store import GraphStore
from .similarity import technology_tags
from .timeutils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

_LIST_FIELDS = ("languages", "dependencies", "frameworks", "technologies")
_SCALAR_FIELDS = (
    "name",
    "path",
    "path_key",
    "analysis_id",
    "ecosystem",
    "primary_language",
    "size",
    "has_tests",
    "has_ci",
    "has_docs",
)


def normalize_path(path: str | Path) -> str:
    """Absolute, normalized form of a project path."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(str(path))))


def path_key(path: str | Path) -> str:
    """Case-folded natural key for a project path."""
    return normalize_path(path).casefold()


def size_band(total_files: int) -> str:
    if total_files < 50:
        return "small"
    if total_files < 500:
        return "medium"
    return "large"


def primary_language(histogram: dict[str, int]) -> str | None:
    """Largest histogram bucket, ties broken by name."""
    if not histogram:
        return None
    return sorted(histogram.items(), key=lambda item: (-item[1], item[0]))[0][0]


@dataclass
class ProjectDescriptor:
    """One scanner observation of a repository."""

    path: str
    analysis_id: str | None = None
    name: str | None = None
    languages: dict[str, int] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    total_files: int = 0
    has_tests: bool = False
    has_ci: bool = False
    has_docs: bool = False
    ecosystem: str | None = None
    frameworks: list[str] = field(default_factory=list)
    timestamp: datetime | str | None = None

    @classmethod
    def from_analysis(cls, analysis: dict[str, Any]) -> "ProjectDescriptor":
        """Build from the repository scanner's analysis payload.

        Expects ``{id, projectName, path, timestamp, structure: {totalFiles,
        languages, hasTests, hasCI, hasDocs}, dependencies: {ecosystem,
        packages, frameworks}}``; missing sections are treated as empty.
        """
        structure = analysis.get("structure") or {}
        deps = analysis.get("dependencies") or {}
        return cls(
            path=analysis["path"],
            analysis_id=analysis.get("id"),
            name=analysis.get("projectName"),
            languages=dict(structure.get("languages") or {}),
            dependencies=list(deps.get("packages") or []),
            total_files=int(structure.get("totalFiles") or 0),
            has_tests=bool(structure.get("hasTests", False)),
            has_ci=bool(structure.get("hasCI", False)),
            has_docs=bool(structure.get("hasDocs", False)),
            ecosystem=deps.get("ecosystem"),
            frameworks=list(deps.get("frameworks") or []),
            timestamp=analysis.get("timestamp"),
        )


class EntityResolver:
    """Finds or creates canonical project nodes from observations."""

    def __init__(self, store: GraphStore, thresholds: Thresholds | None = None):
        self.store = store
        self.thresholds = thresholds or Thresholds()

    def find_project(
        self, path: str | Path | None = None, analysis_id: str | None = None
    ) -> Node | None:
        """Look up a project by analysis id, falling back to its path."""
        if path is None and analysis_id is None:
            return None
        key = {"analysis_id": analysis_id}
        if path is not None:
            key["path_key"] = path_key(path)
        return self.store.lookup(NodeType.PROJECT, key)

    def _observed_properties(self, descriptor: ProjectDescriptor, observed_at: str) -> dict:
        normalized = normalize_path(descriptor.path)
        ecosystem = descriptor.ecosystem.strip().lower() if descriptor.ecosystem else None
        props: dict[str, Any] = {
            "name": descriptor.name or os.path.basename(normalized) or normalized,
            "path": normalized,
            "path_key": normalized.casefold(),
            "analysis_id": descriptor.analysis_id,
            "languages": sorted(descriptor.languages),
            "dependencies": sorted(set(descriptor.dependencies)),
            "ecosystem": ecosystem,
            "frameworks": sorted({f.strip().lower() for f in descriptor.frameworks if f}),
            "primary_language": primary_language(descriptor.languages),
            "size": size_band(descriptor.total_files),
            "total_files": descriptor.total_files,
            "has_tests": descriptor.has_tests,
            "has_ci": descriptor.has_ci,
            "has_docs": descriptor.has_docs,
            "last_analyzed": observed_at,
        }
        props["technologies"] = sorted(technology_tags(props))
        return props

    def _merge(self, existing: dict[str, Any], observed: dict[str, Any], observed_at: str) -> dict:
        merged = dict(existing)
        audit = list(existing.get("audit_history") or [])

        for name in _LIST_FIELDS:
            merged[name] = sorted(set(existing.get(name) or []) | set(observed.get(name) or []))

        merged["total_files"] = max(existing.get("total_files", 0), observed["total_files"])
        observed = {**observed, "size": size_band(merged["total_files"])}

        for name in _SCALAR_FIELDS:
            new_value = observed.get(name)
            if new_value is None:
                continue
            old_value = existing.get(name)
            if old_value == new_value:
                continue
            if old_value is not None:
                audit.append(
                    {"field": name, "old_value": old_value, "timestamp": observed_at}
                )
            merged[name] = new_value

        merged["analysis_count"] = existing.get("analysis_count", 0) + 1
        merged["last_analyzed"] = max(existing.get("last_analyzed") or "", observed_at)
        merged["audit_history"] = audit[-self.thresholds.audit_history_limit :]
        return merged

    def resolve(self, descriptor: ProjectDescriptor) -> Node:
        """
        Create or merge the canonical project node for an observation.

        Also records an analysis node and a project_analyzed_by edge.

        Returns:
            The project node after the merge
        """
        observed_at = format_timestamp(
            parse_timestamp(descriptor.timestamp) if descriptor.timestamp else self.store.now()
        )
        observed = self._observed_properties(descriptor, observed_at)

        def merge(existing: dict[str, Any] | None) -> dict[str, Any]:
            if existing is None:
                return {**observed, "analysis_count": 1}
            return self._merge(existing, observed, observed_at)

        project, created = self.store.upsert_node(
            NodeType.PROJECT,
            {"analysis_id": descriptor.analysis_id, "path_key": path_key(descriptor.path)},
            merge,
        )
        if created:
            logger.info(f"Created project {project.id} for {observed['path']}")
        else:
            logger.debug(
                f"Merged observation into {project.id} "
                f"(analysis #{project.properties['analysis_count']})"
            )

        analysis = self.store.add_node(
            NodeType.ANALYSIS,
            {
                "analysis_id": descriptor.analysis_id,
                "project_path": observed["path"],
                "language_histogram": dict(descriptor.languages),
                "dependencies": observed["dependencies"],
                "structure": {
                    "total_files": descriptor.total_files,
                    "has_tests": descriptor.has_tests,
                    "has_ci": descriptor.has_ci,
                    "has_docs": descriptor.has_docs,
                },
                "observed_at": observed_at,
            },
        )
        self.store.add_edge(
            EdgeType.PROJECT_ANALYZED_BY,
            project.id,
            analysis.id,
            {"observed_at": observed_at},
            created_at=observed_at,
        )
        return project
