"""
User Preference Management

Tracks per-user SSG usage on ``user`` nodes and learns preferred SSGs from
it. Preferences are applied as the last stage of a recommendation: a user
with a strong personal track record on an alternative can override the
engine's candidate.
"""

import json
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .config import Thresholds
from .errors import ValidationError
from .events import ensure_configuration, normalize_ssg
from .graph.models import Edge, EdgeType, Node, NodeType
from .graph.store import GraphStore
from .timeutils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

PREFERRED_SSG_LIMIT = 3

# Fields callers may set directly
EDITABLE_FIELDS = (
    "preferred_ssgs",
    "documentation_style",
    "expertise_level",
    "preferred_technologies",
    "auto_apply_preferences",
)

DEFAULT_PREFERENCES: dict[str, Any] = {
    "preferred_ssgs": [],
    "documentation_style": "comprehensive",
    "expertise_level": "intermediate",
    "preferred_technologies": [],
    "auto_apply_preferences": True,
}


@dataclass
class UserPreferences:
    """Editable preference fields of one user."""

    user_id: str
    preferred_ssgs: list[str] = field(default_factory=list)
    documentation_style: str = "comprehensive"
    expertise_level: str = "intermediate"
    preferred_technologies: list[str] = field(default_factory=list)
    auto_apply_preferences: bool = True
    last_active: str | None = None

    @classmethod
    def from_node(cls, node: Node) -> "UserPreferences":
        props = node.properties
        return cls(
            user_id=props["user_id"],
            preferred_ssgs=list(props.get("preferred_ssgs") or []),
            documentation_style=props.get("documentation_style", "comprehensive"),
            expertise_level=props.get("expertise_level", "intermediate"),
            preferred_technologies=list(props.get("preferred_technologies") or []),
            auto_apply_preferences=props.get("auto_apply_preferences", True),
            last_active=props.get("last_active"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PersonalStats:
    ssg: str
    uses: int = 0
    successes: int = 0

    @property
    def rate(self) -> float:
        return self.successes / self.uses if self.uses else 0.0


@dataclass
class PreferenceAdjustment:
    recommended: str
    adjustment_reason: str | None = None

    @property
    def adjusted(self) -> bool:
        return self.adjustment_reason is not None


def _personal_stats(history: list[dict[str, Any]]) -> dict[str, PersonalStats]:
    stats: dict[str, PersonalStats] = {}
    for event in history:
        entry = stats.setdefault(event["ssg"], PersonalStats(ssg=event["ssg"]))
        entry.uses += 1
        if event.get("success"):
            entry.successes += 1
    return stats


def _infer_preferred(history: list[dict[str, Any]]) -> list[str]:
    """Top SSGs by uses x success rate, ties by name."""
    scored = [
        (s.uses * s.rate, s.ssg) for s in _personal_stats(history).values() if s.successes
    ]
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [ssg for _, ssg in scored[:PREFERRED_SSG_LIMIT]]


class PreferenceManager:
    """Tracks usage and applies learned preferences for any user."""

    def __init__(
        self,
        store: GraphStore,
        thresholds: Thresholds | None = None,
        retention_days: int | None = None,
    ):
        self.store = store
        self.thresholds = thresholds or Thresholds()
        self.retention_days = retention_days

    # =========================================================================
    # User nodes
    # =========================================================================

    def get_user(self, user_id: str) -> Node | None:
        return self.store.lookup(NodeType.USER, {"user_id": user_id})

    def ensure_user(self, user_id: str) -> Node:
        existing = self.get_user(user_id)
        if existing is not None:
            return existing
        node = self.store.add_node(
            NodeType.USER,
            {"user_id": user_id, "last_active": self.store.timestamp()},
        )
        logger.info(f"Created user node {node.id}")
        return node

    def _history(self, node: Node | None) -> list[dict[str, Any]]:
        if node is None:
            return []
        history = list(node.properties.get("usage_history") or [])
        if self.retention_days:
            cutoff = format_timestamp(self.store.now() - timedelta(days=self.retention_days))
            history = [e for e in history if e["timestamp"] >= cutoff]
        return history

    # =========================================================================
    # Preferences
    # =========================================================================

    def get_preferences(self, user_id: str) -> UserPreferences:
        """Stored preferences, or defaults for an unknown user (nothing is written)."""
        node = self.get_user(user_id)
        if node is None:
            return UserPreferences(user_id=user_id)
        return UserPreferences.from_node(node)

    def update_preferences(self, user_id: str, **updates: Any) -> UserPreferences:
        """
        Update editable preference fields.

        Raises:
            ValidationError: On unknown fields or invalid values
        """
        unknown = sorted(set(updates) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                "user node", f"cannot update fields: {', '.join(unknown)}", unknown
            )
        if "preferred_ssgs" in updates:
            updates["preferred_ssgs"] = [normalize_ssg(s) for s in updates["preferred_ssgs"]]
        node = self.ensure_user(user_id)
        node = self.store.update_node(
            node.id, {**updates, "last_active": self.store.timestamp()}
        )
        logger.info(f"Updated preferences for {user_id}: {', '.join(sorted(updates))}")
        return UserPreferences.from_node(node)

    def reset_preferences(self, user_id: str) -> UserPreferences:
        """Restore default preference fields. Usage history is kept."""
        return self.update_preferences(user_id, **DEFAULT_PREFERENCES)

    def export_preferences(self, user_id: str) -> str:
        return json.dumps(self.get_preferences(user_id).to_dict(), indent=2, sort_keys=True)

    def import_preferences(self, user_id: str, payload: str) -> UserPreferences:
        """
        Import preferences exported by ``export_preferences``.

        Raises:
            ValidationError: If the payload is malformed or for another user
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError("preferences import", f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("preferences import", "expected a JSON object")
        if data.get("user_id") != user_id:
            raise ValidationError(
                "preferences import",
                f"user id mismatch: expected {user_id}, got {data.get('user_id')}",
                ["user_id"],
            )
        return self.update_preferences(
            user_id, **{k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        )

    # =========================================================================
    # Usage
    # =========================================================================

    def track_ssg_usage(
        self,
        user_id: str,
        ssg: str,
        success: bool,
        timestamp: datetime | str | None = None,
        project_type: str | None = None,
    ) -> UserPreferences:
        """
        Append a usage event and refresh the inferred preferred SSGs.

        Also links the user to the SSG's configuration node with a
        ``user_prefers`` edge the first time the SSG is used.
        """
        ssg = normalize_ssg(ssg)
        stamp = format_timestamp(
            parse_timestamp(timestamp) if timestamp is not None else self.store.now()
        )
        user = self.ensure_user(user_id)
        config = ensure_configuration(self.store, ssg)

        event = {
            "ssg": ssg,
            "success": bool(success),
            "timestamp": stamp,
            "project_type": project_type,
        }

        def append(props: dict[str, Any]) -> dict[str, Any]:
            history = list(props.get("usage_history") or []) + [event]
            return {
                "usage_history": history,
                "preferred_ssgs": _infer_preferred(history),
                "last_active": max(props.get("last_active") or "", stamp),
            }

        user = self.store.modify_node(user.id, append)
        self.store.find_or_add_edge(
            EdgeType.USER_PREFERS,
            user.id,
            config.id,
            {"ssg": ssg, "first_used": stamp},
            created_at=stamp,
            duplicate_of=lambda edge: edge.target == config.id,
        )
        logger.debug(f"Tracked {ssg} usage for {user_id} (success={success})")
        return UserPreferences.from_node(user)

    def get_personal_stats(self, user_id: str) -> dict[str, PersonalStats]:
        return _personal_stats(self._history(self.get_user(user_id)))

    def get_usage_stats(self, user_id: str) -> dict[str, Any]:
        node = self.get_user(user_id)
        history = self._history(node)
        stats = _personal_stats(history)
        successes = sum(s.successes for s in stats.values())
        project_types = Counter(e.get("project_type") for e in history if e.get("project_type"))
        return {
            "user_id": user_id,
            "total_uses": len(history),
            "successes": successes,
            "success_rate": successes / len(history) if history else 0.0,
            "per_ssg": {
                name: {"uses": s.uses, "successes": s.successes, "rate": s.rate}
                for name, s in sorted(stats.items())
            },
            "project_types": dict(sorted(project_types.items())),
            "last_active": node.properties.get("last_active") if node else None,
        }

    def get_preferred_edges(self, user_id: str) -> list[Edge]:
        node = self.get_user(user_id)
        if node is None:
            return []
        return self.store.edges_from(EdgeType.USER_PREFERS, node.id)

    def get_ssg_recommendations(self, user_id: str) -> list[dict[str, Any]]:
        """Personal SSG ranking: score = uses x success rate."""
        recommendations = []
        for s in self.get_personal_stats(user_id).values():
            reason = f"Used {s.uses} time(s)"
            if s.rate >= self.thresholds.high_success_rate:
                reason += f", {s.rate * 100:.0f}% success rate"
            elif s.rate < self.thresholds.low_success_rate:
                reason += f", only {s.rate * 100:.0f}% success rate"
            recommendations.append({"ssg": s.ssg, "score": s.uses * s.rate, "reason": reason})
        recommendations.sort(key=lambda r: (-r["score"], r["ssg"]))
        return recommendations

    def apply_preferences_to_recommendation(
        self, user_id: str, candidate: str, alternatives: list[str]
    ) -> PreferenceAdjustment:
        """
        Override ``candidate`` with an alternative the user does clearly better with.

        An alternative qualifies with at least ``preference_min_successes``
        personal successes and a personal success rate at least
        ``preference_rate_margin`` above the candidate's (an unused candidate
        counts as 0%). Among qualifiers the highest rate wins, then the most
        uses, then the name.
        """
        candidate = normalize_ssg(candidate)
        node = self.get_user(user_id)
        if node is None:
            return PreferenceAdjustment(recommended=candidate)
        if not node.properties.get("auto_apply_preferences", True):
            logger.debug(f"Preferences not applied for {user_id}: auto-apply disabled")
            return PreferenceAdjustment(recommended=candidate)

        stats = _personal_stats(self._history(node))
        candidate_rate = stats[candidate].rate if candidate in stats else 0.0

        qualifiers = []
        for alternative in {normalize_ssg(a) for a in alternatives}:
            if alternative == candidate or alternative not in stats:
                continue
            personal = stats[alternative]
            if personal.successes < self.thresholds.preference_min_successes:
                continue
            if round(personal.rate - candidate_rate, 9) < self.thresholds.preference_rate_margin:
                continue
            qualifiers.append(personal)

        if not qualifiers:
            return PreferenceAdjustment(recommended=candidate)

        best = sorted(qualifiers, key=lambda s: (-s.rate, -s.uses, s.ssg))[0]
        reason = (
            f"Switched to {best.ssg} based on your usage history "
            f"({best.rate * 100:.0f}% success over {best.uses} uses vs "
            f"{candidate_rate * 100:.0f}% with {candidate})"
        )
        logger.info(f"Personal preference override for {user_id}: {candidate} -> {best.ssg}")
        return PreferenceAdjustment(recommended=best.ssg, adjustment_reason=reason)
