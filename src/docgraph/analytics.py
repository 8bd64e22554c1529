"""
Deployment analytics over the knowledge graph.

Aggregates ``project_deployed_with`` edges into per-SSG success statistics,
a composite 0-100 health score, period-over-period trends and a summary
report. Every query works on one consistent graph snapshot, orders edges by
their authoritative ``created_at`` and accepts an optional ``Deadline``;
an expired deadline fails the whole query with ``AnalyticsTimeoutError``
rather than returning a partial aggregate.
"""

import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from .config import Thresholds
from .graph.models import Edge, EdgeFilter, EdgeType, NodeType
from .graph.store import GraphStore, GraphView
from .timeutils import Deadline, check_deadline, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# Health score weights (sum to 100)
WEIGHT_SUCCESS_RATE = 40
WEIGHT_ACTIVITY_TREND = 25
WEIGHT_FREQUENCY = 20
WEIGHT_DIVERSITY = 15
FREQUENCY_POINTS_PER_DEPLOYMENT = 1.5

# Build time insight thresholds (milliseconds)
FAST_BUILD_MS = 30_000
SLOW_BUILD_MS = 120_000


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


@dataclass
class SSGStatistics:
    """Deployment outcome statistics for one SSG."""

    ssg: str
    total: int = 0
    successes: int = 0
    failures: int = 0
    rate: float = 0.0
    sample_size: int = 0
    last_success_at: str | None = None
    average_build_time: float | None = None
    project_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class HealthFactor:
    name: str
    impact: float
    max_impact: int
    status: str  # good | warning | critical

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class HealthScore:
    score: int
    factors: list[HealthFactor] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"score": self.score, "factors": [f.to_dict() for f in self.factors]}


@dataclass
class TrendWindow:
    start: str
    end: str
    deployments: int = 0
    successes: int = 0
    rate: float = 0.0
    top_ssg: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TrendReport:
    direction: TrendDirection
    deltas: list[float]
    windows: list[TrendWindow]
    period_days: int

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "deltas": list(self.deltas),
            "windows": [w.to_dict() for w in self.windows],
            "period_days": self.period_days,
        }


def _status(value: float, good: float, warning: float) -> str:
    if value > good:
        return "good"
    if value > warning:
        return "warning"
    return "critical"


class AnalyticsEngine:
    """Aggregates deployment history. Stateless apart from the injected store."""

    def __init__(
        self,
        store: GraphStore,
        thresholds: Thresholds | None = None,
        retention_days: int | None = None,
        trend_period_days: int = 30,
        trend_max_periods: int = 12,
        health_window_days: int = 30,
    ):
        self.store = store
        self.thresholds = thresholds or Thresholds()
        self.retention_days = retention_days
        self.trend_period_days = trend_period_days
        self.trend_max_periods = trend_max_periods
        self.health_window_days = health_window_days

    @classmethod
    def from_config(
        cls, store: GraphStore, config: dict[str, Any], thresholds: Thresholds | None = None
    ) -> "AnalyticsEngine":
        section = config.get("analytics", {})
        return cls(
            store,
            thresholds=thresholds or Thresholds.from_config(config),
            retention_days=section.get("retention_days"),
            trend_period_days=section.get("trend_period_days", 30),
            trend_max_periods=section.get("trend_max_periods", 12),
            health_window_days=section.get("health_window_days", 30),
        )

    # =========================================================================
    # Scanning
    # =========================================================================

    def _retention_cutoff(self) -> str | None:
        if not self.retention_days:
            return None
        return format_timestamp(self.store.now() - timedelta(days=self.retention_days))

    def scan_deployments(
        self,
        view: GraphView,
        project_ids: list[str] | None = None,
        deadline: Deadline | None = None,
    ) -> list[Edge]:
        """Deployment edges in scope, ordered by (created_at, id)."""
        check_deadline(deadline, "deployment scan")
        since = self._retention_cutoff()
        if project_ids is None:
            edges = view.find_edges(
                EdgeFilter(type=EdgeType.PROJECT_DEPLOYED_WITH, since=since)
            )
        else:
            edges = []
            for project_id in sorted(set(project_ids)):
                check_deadline(deadline, "deployment scan")
                edges.extend(
                    view.find_edges(
                        EdgeFilter(
                            type=EdgeType.PROJECT_DEPLOYED_WITH,
                            source=project_id,
                            since=since,
                        )
                    )
                )
            edges.sort(key=lambda e: (e.created_at, e.id))
        return edges

    def _aggregate(
        self, edges: list[Edge], deadline: Deadline | None = None
    ) -> dict[str, SSGStatistics]:
        stats: dict[str, SSGStatistics] = {}
        build_times: dict[str, list[float]] = {}
        projects: dict[str, set[str]] = {}

        for edge in edges:
            check_deadline(deadline, "ssg aggregation")
            ssg = edge.properties["ssg"]
            entry = stats.setdefault(ssg, SSGStatistics(ssg=ssg))
            entry.total += 1
            if edge.properties.get("success"):
                entry.successes += 1
                if entry.last_success_at is None or edge.created_at > entry.last_success_at:
                    entry.last_success_at = edge.created_at
            else:
                entry.failures += 1
            build_time = edge.properties.get("build_time")
            if build_time is not None:
                build_times.setdefault(ssg, []).append(float(build_time))
            projects.setdefault(ssg, set()).add(edge.source)

        for ssg, entry in stats.items():
            entry.sample_size = entry.total
            entry.rate = entry.successes / entry.total if entry.total else 0.0
            times = build_times.get(ssg)
            if times:
                entry.average_build_time = sum(times) / len(times)
            entry.project_count = len(projects.get(ssg, ()))
        return stats

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_ssg_statistics(
        self,
        ssg: str,
        project_ids: list[str] | None = None,
        deadline: Deadline | None = None,
    ) -> SSGStatistics:
        """
        Success statistics for one SSG.

        Returns zeroed statistics (rate 0, sample size 0) when the SSG has no
        recorded deployments in scope.
        """
        ssg = ssg.strip().lower()
        edges = [
            e
            for e in self.scan_deployments(self.store.view(), project_ids, deadline)
            if e.properties["ssg"] == ssg
        ]
        return self._aggregate(edges, deadline).get(ssg, SSGStatistics(ssg=ssg))

    def get_all_statistics(
        self, project_ids: list[str] | None = None, deadline: Deadline | None = None
    ) -> dict[str, SSGStatistics]:
        """Statistics for every SSG with history in scope, keyed by SSG name."""
        edges = self.scan_deployments(self.store.view(), project_ids, deadline)
        return dict(sorted(self._aggregate(edges, deadline).items()))

    def compare_ssgs(
        self,
        ssgs: list[str] | None = None,
        project_ids: list[str] | None = None,
        deadline: Deadline | None = None,
    ) -> list[SSGStatistics]:
        """
        Rank SSGs by success rate, then sample size, then most recent success.

        SSGs without history are included with zeroed statistics. Remaining
        ties are broken by name so the ranking is deterministic.
        """
        edges = self.scan_deployments(self.store.view(), project_ids, deadline)
        stats = self._aggregate(edges, deadline)
        names = (
            sorted({s.strip().lower() for s in ssgs}) if ssgs is not None else sorted(stats)
        )
        ranked = [stats.get(name, SSGStatistics(ssg=name)) for name in names]
        ranked.sort(key=lambda s: s.ssg)
        ranked.sort(key=lambda s: s.last_success_at or "", reverse=True)
        ranked.sort(key=lambda s: (s.rate, s.sample_size), reverse=True)
        return ranked

    # =========================================================================
    # Health score
    # =========================================================================

    def get_health_score(self, deadline: Deadline | None = None) -> HealthScore:
        """
        Composite deployment health in [0, 100].

        - success rate (40): overall success rate
        - activity trend (25): projects deploying in the trailing window vs
          the window before it (1.0 when holding or growing, 0 when idle)
        - frequency (20): 1.5 points per deployment in the trailing window
        - diversity (15): normalized 1 - Herfindahl index over SSG usage

        No history yields 0.
        """
        edges = self.scan_deployments(self.store.view(), None, deadline)
        total = len(edges)
        if total == 0:
            return HealthScore(
                score=0,
                factors=[
                    HealthFactor("Overall Success Rate", 0.0, WEIGHT_SUCCESS_RATE, "critical"),
                    HealthFactor("Active Project Trend", 0.0, WEIGHT_ACTIVITY_TREND, "critical"),
                    HealthFactor("Deployment Activity", 0.0, WEIGHT_FREQUENCY, "critical"),
                    HealthFactor("SSG Diversity", 0.0, WEIGHT_DIVERSITY, "critical"),
                ],
            )

        now = self.store.now()
        window = timedelta(days=self.health_window_days)
        current_start = format_timestamp(now - window)
        previous_start = format_timestamp(now - 2 * window)
        now_stamp = format_timestamp(now)

        successes = 0
        active_now: set[str] = set()
        active_before: set[str] = set()
        recent = 0
        usage: Counter[str] = Counter()
        for edge in edges:
            check_deadline(deadline, "health score")
            if edge.properties.get("success"):
                successes += 1
            usage[edge.properties["ssg"]] += 1
            if current_start <= edge.created_at <= now_stamp:
                active_now.add(edge.source)
                recent += 1
            elif previous_start <= edge.created_at < current_start:
                active_before.add(edge.source)

        rate = successes / total
        rate_impact = WEIGHT_SUCCESS_RATE * rate

        if not active_now:
            trend_factor = 0.0
        elif len(active_now) >= len(active_before):
            trend_factor = 1.0
        else:
            trend_factor = len(active_now) / len(active_before)
        trend_impact = WEIGHT_ACTIVITY_TREND * trend_factor

        frequency_impact = min(
            float(WEIGHT_FREQUENCY), FREQUENCY_POINTS_PER_DEPLOYMENT * recent
        )

        kinds = len(usage)
        if kinds <= 1:
            diversity = 0.0
        else:
            hhi = sum((count / total) ** 2 for count in usage.values())
            diversity = (1 - hhi) / (1 - 1 / kinds)
        diversity_impact = WEIGHT_DIVERSITY * diversity

        raw = rate_impact + trend_impact + frequency_impact + diversity_impact
        score = max(0, min(100, math.floor(raw + 0.5)))

        return HealthScore(
            score=score,
            factors=[
                HealthFactor(
                    "Overall Success Rate",
                    round(rate_impact, 2),
                    WEIGHT_SUCCESS_RATE,
                    _status(rate, 0.8, 0.5),
                ),
                HealthFactor(
                    "Active Project Trend",
                    round(trend_impact, 2),
                    WEIGHT_ACTIVITY_TREND,
                    "good" if trend_factor >= 1 else _status(trend_factor, 0.5, 0.0),
                ),
                HealthFactor(
                    "Deployment Activity",
                    round(frequency_impact, 2),
                    WEIGHT_FREQUENCY,
                    _status(recent, 10, 5),
                ),
                HealthFactor(
                    "SSG Diversity",
                    round(diversity_impact, 2),
                    WEIGHT_DIVERSITY,
                    _status(kinds, 3, 1),
                ),
            ],
        )

    # =========================================================================
    # Trends
    # =========================================================================

    def identify_trends(
        self, period_days: int | None = None, deadline: Deadline | None = None
    ) -> TrendReport:
        """
        Bucket deployments into ``period_days``-wide windows ending now.

        Windows are returned oldest first. Deltas (percentage points) are
        taken between consecutive non-empty windows; the direction follows
        the most recent delta and is "stable" when there is none.
        """
        period_days = period_days or self.trend_period_days
        if period_days <= 0:
            raise ValueError(f"period_days must be positive, got {period_days}")

        now = self.store.now()
        period = timedelta(days=period_days)
        count = self.trend_max_periods
        windows = [
            TrendWindow(
                start=format_timestamp(now - (i + 1) * period),
                end=format_timestamp(now - i * period),
            )
            for i in reversed(range(count))
        ]
        per_window_ssgs: list[Counter[str]] = [Counter() for _ in windows]

        for edge in self.scan_deployments(self.store.view(), None, deadline):
            check_deadline(deadline, "trend analysis")
            periods_ago = math.floor((now - parse_timestamp(edge.created_at)) / period)
            if periods_ago < 0 or periods_ago >= count:
                continue
            index = count - 1 - periods_ago
            window = windows[index]
            window.deployments += 1
            if edge.properties.get("success"):
                window.successes += 1
            per_window_ssgs[index][edge.properties["ssg"]] += 1

        for window, ssgs in zip(windows, per_window_ssgs):
            if window.deployments:
                window.rate = window.successes / window.deployments
                window.top_ssg = sorted(ssgs.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]

        populated = [w for w in windows if w.deployments]
        deltas = [
            round((later.rate - earlier.rate) * 100, 2)
            for earlier, later in zip(populated, populated[1:])
        ]

        direction = TrendDirection.STABLE
        if deltas:
            latest = deltas[-1]
            if latest > self.thresholds.trend_threshold_pp:
                direction = TrendDirection.IMPROVING
            elif latest < -self.thresholds.trend_threshold_pp:
                direction = TrendDirection.DECLINING

        return TrendReport(
            direction=direction, deltas=deltas, windows=windows, period_days=period_days
        )

    # =========================================================================
    # Report
    # =========================================================================

    def generate_report(self, deadline: Deadline | None = None) -> dict[str, Any]:
        """Summary, per-SSG patterns, insights and recommendations."""
        view = self.store.view()
        project_count = len(view.find_nodes(type=NodeType.PROJECT))
        edges = self.scan_deployments(view, None, deadline)
        stats = self._aggregate(edges, deadline)

        patterns = sorted(stats.values(), key=lambda s: (-s.total, s.ssg))
        total = sum(s.total for s in patterns)
        successes = sum(s.successes for s in patterns)
        overall = successes / total if total else 0.0

        most_used = patterns[0].ssg if patterns else "none"
        eligible = [s for s in patterns if s.total >= 2]
        most_successful = (
            sorted(eligible, key=lambda s: (-s.rate, -s.total, s.ssg))[0].ssg
            if eligible
            else most_used
        )

        summary = {
            "total_projects": project_count,
            "total_deployments": total,
            "overall_success_rate": overall,
            "most_used_ssg": most_used,
            "most_successful_ssg": most_successful,
        }
        insights = self._insights(patterns, overall, total)
        return {
            "summary": summary,
            "patterns": [p.to_dict() for p in patterns],
            "insights": insights,
            "recommendations": self._recommendations(patterns, insights, total),
        }

    def _insights(
        self, patterns: list[SSGStatistics], overall: float, total: int
    ) -> list[dict[str, Any]]:
        insights: list[dict[str, Any]] = []
        if total and overall > self.thresholds.high_success_rate:
            insights.append(
                {
                    "type": "success",
                    "title": "High Success Rate",
                    "description": f"Excellent! {overall * 100:.1f}% of deployments succeed",
                    "metric": overall,
                }
            )
        elif total and overall < self.thresholds.low_success_rate:
            insights.append(
                {
                    "type": "warning",
                    "title": "Low Success Rate",
                    "description": (
                        f"Only {overall * 100:.1f}% of deployments succeed. "
                        "Review common failure patterns."
                    ),
                    "metric": overall,
                }
            )

        for p in patterns:
            if p.rate == 1.0 and p.total >= self.thresholds.min_sample_size:
                insights.append(
                    {
                        "type": "success",
                        "title": f"{p.ssg} Perfect Track Record",
                        "description": f"All {p.total} deployments with {p.ssg} succeeded",
                        "ssg": p.ssg,
                        "metric": p.rate,
                    }
                )
            elif (
                p.rate < self.thresholds.low_success_rate
                and p.total >= self.thresholds.min_failure_sample
            ):
                insights.append(
                    {
                        "type": "warning",
                        "title": f"{p.ssg} Struggling",
                        "description": f"Only {p.rate * 100:.0f}% success rate with {p.ssg}",
                        "ssg": p.ssg,
                        "metric": p.rate,
                    }
                )

            if p.average_build_time is not None:
                if p.average_build_time < FAST_BUILD_MS:
                    insights.append(
                        {
                            "type": "success",
                            "title": f"{p.ssg} Fast Builds",
                            "description": f"Average build time: {p.average_build_time / 1000:.1f}s",
                            "ssg": p.ssg,
                            "metric": p.average_build_time,
                        }
                    )
                elif p.average_build_time > SLOW_BUILD_MS:
                    insights.append(
                        {
                            "type": "warning",
                            "title": f"{p.ssg} Slow Builds",
                            "description": (
                                f"Average build time: {p.average_build_time / 1000:.1f}s. "
                                "Consider optimization."
                            ),
                            "ssg": p.ssg,
                            "metric": p.average_build_time,
                        }
                    )
        return insights

    def _recommendations(
        self, patterns: list[SSGStatistics], insights: list[dict[str, Any]], total: int
    ) -> list[str]:
        recommendations = []
        best = next(
            (
                p
                for p in patterns
                if p.rate > self.thresholds.high_success_rate
                and p.total >= self.thresholds.min_failure_sample
            ),
            None,
        )
        if best:
            recommendations.append(
                f"Consider using {best.ssg} for new projects ({best.rate * 100:.0f}% success rate)"
            )

        problematic = next(
            (
                p
                for p in patterns
                if p.rate < self.thresholds.low_success_rate
                and p.total >= self.thresholds.min_sample_size
            ),
            None,
        )
        if problematic:
            recommendations.append(
                f"Review {problematic.ssg} deployment process - "
                f"{problematic.failures} recent failures"
            )

        if len(patterns) < 2:
            recommendations.append(
                "Experiment with different SSGs to find the best fit for different project types"
            )
        if total < 5:
            recommendations.append(
                "Deploy more projects to build a robust historical dataset for better recommendations"
            )
        if sum(1 for i in insights if i["type"] == "warning") > 2:
            recommendations.append(
                "Multiple deployment issues detected - consider reviewing documentation setup process"
            )
        return recommendations
