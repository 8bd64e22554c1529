"""
SSG recommendation pipeline.

Four deterministic stages, each recorded in the reasoning trail:

1. Ecosystem heuristic: project ecosystem/framework/language signals map to
   a baseline candidate (always available, the guaranteed fallback)
2. Explicit preference: a caller-supplied ecosystem or priority forces the
   candidate and locks it against historical switching
3. Historical evidence: success statistics of the project and its similar
   projects raise or lower confidence, or switch to a clearly better SSG
4. Personal preference: applied last, the user's own track record may
   override any earlier candidate (confidence unchanged)

Analytics failures skip Stage 3 with a note in the trail; they never
prevent a recommendation. Identical graph snapshots and inputs produce
byte-identical ``to_json()`` output.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .analytics import AnalyticsEngine, SSGStatistics
from .config import Thresholds
from .errors import AnalyticsError
from .graph.models import Node, NodeType
from .graph.store import GraphStore
from .preferences import PreferenceManager
from .similarity import rank_similar_projects
from .timeutils import Deadline

logger = logging.getLogger(__name__)

ANY_ECOSYSTEM = "any"


@dataclass(frozen=True)
class SSGProfile:
    name: str
    affinity: float
    pros: tuple[str, ...]
    cons: tuple[str, ...]


SSG_CATALOG: dict[str, SSGProfile] = {
    "docusaurus": SSGProfile(
        "Docusaurus",
        0.75,
        (
            "Modern React-based framework",
            "Strong support for versioning and i18n",
            "Active community and regular updates",
        ),
        ("Requires a Node.js toolchain", "Heavier than template-only generators"),
    ),
    "mkdocs": SSGProfile(
        "MkDocs",
        0.75,
        ("Simple setup", "Python-based if team prefers", "Great themes"),
        ("Less flexible than Docusaurus", "Limited React component support"),
    ),
    "hugo": SSGProfile(
        "Hugo",
        0.70,
        ("Extremely fast builds", "No dependencies"),
        ("Steeper learning curve", "Go templating may be unfamiliar"),
    ),
    "jekyll": SSGProfile(
        "Jekyll",
        0.65,
        ("Native GitHub Pages support", "Simple Markdown-first workflow"),
        ("Requires a Ruby toolchain", "Slow builds on large sites"),
    ),
    "eleventy": SSGProfile(
        "Eleventy",
        0.60,
        ("Flexible templating", "Ships zero client-side JavaScript by default"),
        ("Few documentation-specific features", "More setup for navigation and search"),
    ),
}

DEFAULT_SSG = "docusaurus"

# Ecosystem -> (ssg, reason)
ECOSYSTEM_SSG: dict[str, tuple[str, str]] = {
    "python": ("mkdocs", "Python ecosystem detected"),
    "javascript": ("docusaurus", "JavaScript/TypeScript ecosystem detected"),
    "typescript": ("docusaurus", "JavaScript/TypeScript ecosystem detected"),
    "ruby": ("jekyll", "Ruby ecosystem detected"),
    "go": ("hugo", "Go ecosystem detected"),
}

FRAMEWORK_SSG: dict[str, str] = {
    "react": "docusaurus",
    "next": "docusaurus",
    "gatsby": "docusaurus",
    "vue": "docusaurus",
    "django": "mkdocs",
    "flask": "mkdocs",
    "fastapi": "mkdocs",
    "rails": "jekyll",
}

PRIORITY_SSG: dict[str, str] = {
    "simplicity": "jekyll",
    "features": "docusaurus",
    "performance": "hugo",
}


def _pct(rate: float) -> str:
    return f"{rate * 100:.0f}%"


def _evidence(stats: SSGStatistics) -> str:
    return f"{stats.successes}/{stats.total} successful deployments ({_pct(stats.rate)})"


@dataclass
class Recommendation:
    """Final pipeline output."""

    recommended: str
    confidence: float
    reasoning: list[str] = field(default_factory=list)
    alternatives: list[dict[str, Any]] = field(default_factory=list)
    project_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "recommended": self.recommended,
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "alternatives": [dict(a) for a in self.alternatives],
            "project_id": self.project_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, indent=2)


@dataclass
class _PipelineState:
    candidate: str
    confidence: float
    locked: bool = False
    decisions: list[str] = field(default_factory=list)
    evidence: list[str] = field(default_factory=list)
    heuristics: list[str] = field(default_factory=list)
    trail: list[str] = field(default_factory=list)
    history: dict[str, SSGStatistics] = field(default_factory=dict)


class RecommendationEngine:
    """Staged, deterministic SSG recommender."""

    def __init__(
        self,
        store: GraphStore,
        analytics: AnalyticsEngine,
        preferences: PreferenceManager,
        thresholds: Thresholds | None = None,
        heuristic_confidence: float = 0.85,
        fallback_confidence: float = 0.70,
    ):
        self.store = store
        self.analytics = analytics
        self.preferences = preferences
        self.thresholds = thresholds or Thresholds()
        self.heuristic_confidence = heuristic_confidence
        self.fallback_confidence = fallback_confidence

    # =========================================================================
    # Stage 1: ecosystem heuristic
    # =========================================================================

    def _stage_heuristic(self, project: Node | None) -> _PipelineState:
        props = project.properties if project is not None else {}
        ecosystem = (props.get("ecosystem") or "").lower()
        if ecosystem in ECOSYSTEM_SSG:
            ssg, reason = ECOSYSTEM_SSG[ecosystem]
            return self._heuristic_state(ssg, reason)

        for framework in sorted(props.get("frameworks") or []):
            ssg = FRAMEWORK_SSG.get(framework.lower())
            if ssg:
                return self._heuristic_state(ssg, f"{framework} framework detected")

        language = (props.get("primary_language") or "").lower()
        if language in ECOSYSTEM_SSG:
            ssg, reason = ECOSYSTEM_SSG[language]
            return self._heuristic_state(ssg, reason)

        state = _PipelineState(candidate=DEFAULT_SSG, confidence=self.fallback_confidence)
        state.heuristics.append(f"No ecosystem signals detected; defaulting to {DEFAULT_SSG}")
        state.trail.append("Stage 1 (heuristic): fallback default")
        return state

    def _heuristic_state(self, ssg: str, reason: str) -> _PipelineState:
        state = _PipelineState(candidate=ssg, confidence=self.heuristic_confidence)
        state.heuristics.append(reason)
        state.heuristics.extend(SSG_CATALOG[ssg].pros)
        state.trail.append(f"Stage 1 (heuristic): {ssg}")
        return state

    # =========================================================================
    # Stage 2: explicit preference
    # =========================================================================

    def _stage_explicit(
        self, state: _PipelineState, ecosystem: str | None, priority: str | None
    ) -> None:
        ecosystem = (ecosystem or "").strip().lower()
        priority = (priority or "").strip().lower()

        if ecosystem and ecosystem != ANY_ECOSYSTEM:
            if ecosystem in ECOSYSTEM_SSG:
                self._force(state, ECOSYSTEM_SSG[ecosystem][0], f"ecosystem preference '{ecosystem}'")
                return
            state.trail.append(f"Stage 2 (explicit): unrecognized ecosystem '{ecosystem}' ignored")

        if priority:
            if priority in PRIORITY_SSG:
                self._force(state, PRIORITY_SSG[priority], f"priority '{priority}'")
                return
            state.trail.append(f"Stage 2 (explicit): unrecognized priority '{priority}' ignored")

        if not state.locked:
            state.trail.append("Stage 2 (explicit): no explicit preference")

    def _force(self, state: _PipelineState, ssg: str, what: str) -> None:
        if ssg != state.candidate:
            state.decisions.append(f"Using {ssg} per explicit {what}")
        else:
            state.decisions.append(f"Explicit {what} confirms {ssg}")
        state.candidate = ssg
        state.confidence = self.heuristic_confidence
        state.locked = True
        state.trail.append(f"Stage 2 (explicit): {ssg} locked by {what}")

    # =========================================================================
    # Stage 3: historical evidence
    # =========================================================================

    def _scope(self, project: Node | None) -> list[str] | None:
        if project is None:
            return None
        projects = self.store.find_nodes(type=NodeType.PROJECT)
        similar = rank_similar_projects(project, projects, limit=None)
        return [project.id] + [s.project.id for s in similar]

    def _stage_history(
        self, state: _PipelineState, project: Node | None, deadline: Deadline | None
    ) -> None:
        t = self.thresholds
        scope = self._scope(project)
        scope_label = "similar projects" if scope is not None else "all projects"
        try:
            state.history = self.analytics.get_all_statistics(scope, deadline)
        except AnalyticsError as e:
            logger.warning(f"Historical analytics unavailable, using heuristic only: {e}")
            state.trail.append(f"Stage 3 (history): skipped, analytics unavailable ({e})")
            return

        if not state.history:
            state.trail.append(f"Stage 3 (history): no deployments recorded for {scope_label}")
            return

        current = state.history.get(state.candidate, SSGStatistics(ssg=state.candidate))
        if current.sample_size >= t.min_sample_size and current.rate >= t.high_success_rate:
            state.confidence = min(t.confidence_cap, state.confidence + t.confidence_boost)
            state.evidence.append(
                f"{state.candidate} has {_evidence(current)} on {scope_label}"
            )
        elif current.sample_size >= t.min_failure_sample and current.rate < t.low_success_rate:
            state.confidence = max(t.confidence_floor, state.confidence - t.confidence_penalty)
            state.evidence.append(
                f"{state.candidate} has only {_evidence(current)} on {scope_label}"
            )

        # Switching needs a measured baseline for the current candidate.
        if current.sample_size < t.min_failure_sample:
            state.trail.append(
                f"Stage 3 (history): no comparable history for {state.candidate} "
                f"on {scope_label}, keeping it"
            )
            return

        better = [
            s
            for s in state.history.values()
            if s.ssg != state.candidate
            and s.sample_size >= t.min_sample_size
            and round(s.rate - current.rate, 9) > t.switch_rate_margin
        ]
        if better:
            better.sort(key=lambda s: s.ssg)
            better.sort(key=lambda s: s.last_success_at or "", reverse=True)
            better.sort(key=lambda s: (s.rate, s.sample_size), reverse=True)
            best = better[0]
            if state.locked:
                state.trail.append(
                    f"Stage 3 (history): {best.ssg} outperforms {state.candidate} "
                    "but explicit preference takes precedence"
                )
                return
            state.decisions.append(
                f"Switched from {state.candidate} to {best.ssg}: {_pct(best.rate)} success rate "
                f"({best.successes}/{best.total}) vs {_pct(current.rate)} "
                f"({current.successes}/{current.total}) on {scope_label}"
            )
            state.confidence = min(t.switch_confidence_cap, best.rate + t.confidence_boost)
            state.trail.append(f"Stage 3 (history): switched to {best.ssg}")
            state.candidate = best.ssg
            return

        state.trail.append(f"Stage 3 (history): evidence from {scope_label} applied")

    # =========================================================================
    # Stage 4: personal preference
    # =========================================================================

    def _known_ssgs(self, state: _PipelineState) -> list[str]:
        return sorted(set(SSG_CATALOG) | set(state.history))

    def _stage_personal(self, state: _PipelineState, user_id: str | None) -> None:
        if user_id is None:
            state.trail.append("Stage 4 (personal): skipped, no user")
            return
        alternatives = [s for s in self._known_ssgs(state) if s != state.candidate]
        adjustment = self.preferences.apply_preferences_to_recommendation(
            user_id, state.candidate, alternatives
        )
        if adjustment.adjusted:
            state.decisions.insert(0, adjustment.adjustment_reason)
            state.trail.append(f"Stage 4 (personal): overridden to {adjustment.recommended}")
            state.candidate = adjustment.recommended
        else:
            state.trail.append("Stage 4 (personal): no override")

    # =========================================================================
    # Output
    # =========================================================================

    def _alternatives(self, state: _PipelineState) -> list[dict[str, Any]]:
        scored = []
        for ssg in self._known_ssgs(state):
            if ssg == state.candidate:
                continue
            profile = SSG_CATALOG.get(ssg)
            stats = state.history.get(ssg)
            if stats is not None and stats.sample_size >= self.thresholds.min_sample_size:
                score = stats.rate
            else:
                score = profile.affinity if profile else 0.5
            scored.append(
                {
                    "ssg": ssg,
                    "name": profile.name if profile else ssg,
                    "score": round(score, 4),
                    "pros": list(profile.pros) if profile else [],
                    "cons": list(profile.cons) if profile else [],
                }
            )
        scored.sort(key=lambda a: (-a["score"], a["ssg"]))
        return scored[:2]

    def recommend(
        self,
        project_id: str | None = None,
        *,
        ecosystem: str | None = None,
        priority: str | None = None,
        user_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Recommendation:
        """
        Recommend an SSG for a project (or globally when project_id is None).

        Args:
            project_id: Project node id; unknown ids fall back to global scope
            ecosystem: Explicit ecosystem preference ("any" means none)
            priority: Explicit priority: simplicity | features | performance
            user_id: User whose personal history may override the result
            deadline: Bound for historical scans

        Returns:
            Recommendation with confidence in [0, 1]
        """
        project = self.store.get_node(project_id) if project_id else None
        if project is not None and project.type != NodeType.PROJECT:
            project = None
        if project_id and project is None:
            logger.warning(f"Unknown project {project_id}, recommending without project context")

        state = self._stage_heuristic(project)
        self._stage_explicit(state, ecosystem, priority)
        self._stage_history(state, project, deadline)
        self._stage_personal(state, user_id)

        confidence = round(min(1.0, max(0.0, state.confidence)), 4)
        reasoning = state.decisions + state.evidence + state.heuristics + state.trail
        recommendation = Recommendation(
            recommended=state.candidate,
            confidence=confidence,
            reasoning=reasoning,
            alternatives=self._alternatives(state),
            project_id=project.id if project is not None else None,
        )
        logger.info(
            f"Recommended {recommendation.recommended} "
            f"({recommendation.confidence:.2f}) for {project_id or 'global scope'}"
        )
        return recommendation
