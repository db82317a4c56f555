"""Derived project metrics.

Pure functions over store snapshots: nothing here mutates the store. The
scores are shown verbatim in the dashboard, so the weights and thresholds
must not drift.
"""

import math
from dataclasses import asdict, dataclass
from typing import Literal

from planai.store.entities import CodeIssue, Learning, Project, Step

RiskLevel = Literal["low", "medium", "high"]
TimelineStatus = Literal["on-track", "at-risk", "delayed"]

RISK_PENALTY: dict[str, int] = {"high": 30, "medium": 15, "low": 0}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return math.floor(value + 0.5)


def completion_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(completed / total * 100)


def progress_rate(steps: list[Step]) -> float:
    total = len(steps)
    if total == 0:
        return 0.0
    completed = sum(1 for step in steps if step.completed)
    return completed / total * 100


def quality_score(issues: list[CodeIssue]) -> int:
    high = sum(1 for issue in issues if issue.severity == "high")
    medium = sum(1 for issue in issues if issue.severity == "medium")
    return max(0, 100 - high * 15 - medium * 5)


def assess_risk(high_severity_issues: int, rate: float) -> RiskLevel:
    if high_severity_issues > 2 or rate < 30:
        return "high"
    if high_severity_issues > 0 or rate < 60:
        return "medium"
    return "low"


def assess_timeline(status: str | None, rate: float) -> TimelineStatus:
    if status != "in-progress":
        return "on-track"
    if rate < 40:
        return "delayed"
    if rate < 70:
        return "at-risk"
    return "on-track"


def efficiency(learnings_count: int, rate: float) -> float:
    return min(100, 60 + learnings_count * 5 + rate * 0.3)


def overall_score(
    velocity: float, quality: int, efficiency_score: float, risk: RiskLevel
) -> int:
    return round_half_up(
        velocity * 0.3
        + quality * 0.25
        + efficiency_score * 0.25
        + (100 - RISK_PENALTY[risk]) * 0.2
    )


@dataclass(frozen=True)
class ProjectHealth:
    overall_score: int
    velocity: float
    quality: int
    risk: RiskLevel
    efficiency: float
    timeline: TimelineStatus
    code_health_score: int
    high_severity_issues: int
    medium_severity_issues: int

    def to_dict(self) -> dict:
        return asdict(self)


def project_health(
    project: Project | None,
    steps: list[Step],
    learnings: list[Learning],
    issues: list[CodeIssue],
) -> ProjectHealth:
    rate = progress_rate(steps)
    high = sum(1 for issue in issues if issue.severity == "high")
    medium = sum(1 for issue in issues if issue.severity == "medium")
    quality = quality_score(issues)
    risk = assess_risk(high, rate)
    eff = efficiency(len(learnings), rate)
    return ProjectHealth(
        overall_score=overall_score(rate, quality, eff, risk),
        velocity=rate,
        quality=quality,
        risk=risk,
        efficiency=eff,
        timeline=assess_timeline(project.status if project else None, rate),
        code_health_score=quality,
        high_severity_issues=high,
        medium_severity_issues=medium,
    )
