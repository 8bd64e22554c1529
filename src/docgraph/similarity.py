"""
Similar-project scoring.

Two projects are similar when they share a canonical path or at least one
technology tag. Ranking rules, in order:

1. Canonical-path match first
2. More shared technology tags
3. Higher Jaccard overlap of technology tags
4. Node id (ascending) as the deterministic tie-breaker
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .graph.models import Node

DEFAULT_SIMILAR_LIMIT = 5


def technology_tags(properties: dict[str, Any]) -> set[str]:
    """Lower-cased technology tags of a project (languages, ecosystem, frameworks)."""
    tags: set[str] = set()
    for key in ("technologies", "languages", "frameworks"):
        for value in properties.get(key) or []:
            if value:
                tags.add(str(value).strip().lower())
    ecosystem = properties.get("ecosystem")
    if ecosystem:
        tags.add(str(ecosystem).strip().lower())
    tags.discard("")
    return tags


@dataclass
class SimilarProject:
    """A project ranked against a reference project."""

    project: Node
    shared_tags: list[str] = field(default_factory=list)
    jaccard: float = 0.0
    same_path: bool = False

    @property
    def shared_count(self) -> int:
        return len(self.shared_tags)

    def sort_key(self) -> tuple:
        return (not self.same_path, -self.shared_count, -self.jaccard, self.project.id)

    def to_dict(self) -> dict:
        return {
            "id": self.project.id,
            "name": self.project.properties.get("name"),
            "path": self.project.properties.get("path"),
            "shared_tags": list(self.shared_tags),
            "jaccard": round(self.jaccard, 4),
            "same_path": self.same_path,
        }


def score_similarity(reference: dict[str, Any], other: dict[str, Any]) -> tuple[list[str], float, bool]:
    """
    Score ``other`` against ``reference`` project properties.

    Returns:
        (shared tags sorted, Jaccard overlap, canonical-path match)
    """
    ref_tags = technology_tags(reference)
    other_tags = technology_tags(other)
    shared = sorted(ref_tags & other_tags)
    union = ref_tags | other_tags
    jaccard = len(shared) / len(union) if union else 0.0
    same_path = bool(reference.get("path_key")) and reference.get("path_key") == other.get(
        "path_key"
    )
    return shared, jaccard, same_path


def is_similar(reference: dict[str, Any], other: dict[str, Any]) -> bool:
    shared, _, same_path = score_similarity(reference, other)
    return same_path or bool(shared)


def rank_similar_projects(
    reference: Node,
    candidates: Iterable[Node],
    limit: int | None = DEFAULT_SIMILAR_LIMIT,
) -> list[SimilarProject]:
    """Rank candidate projects by similarity to ``reference``, excluding itself."""
    ranked = []
    for candidate in candidates:
        if candidate.id == reference.id:
            continue
        shared, jaccard, same_path = score_similarity(
            reference.properties, candidate.properties
        )
        if not shared and not same_path:
            continue
        ranked.append(
            SimilarProject(
                project=candidate,
                shared_tags=shared,
                jaccard=jaccard,
                same_path=same_path,
            )
        )
    ranked.sort(key=SimilarProject.sort_key)
    if limit is not None:
        ranked = ranked[:limit]
    return ranked
