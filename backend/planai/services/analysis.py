"""Project analysis: a configured analysis endpoint, or a local fallback.

The endpoint receives ``{provider, model, features, context}`` and must
answer with an object holding ``projectOptimization``,
``codeQualityInsights`` and ``learningInsights``. The local fallback builds
the same shape from the store and the metrics engine.
"""

import logging
from dataclasses import dataclass, field

import httpx

from planai.config import settings
from planai.services.errors import (
    AnalysisValidationError,
    ProviderNotConfiguredError,
    UpstreamResponseError,
    raise_for_upstream_status,
    translate_httpx_error,
)
from planai.services.providers import with_retries
from planai.store.entities import CodeIssue, Learning, Project, Step
from planai.store.entity_store import EntityStore
from planai.store.metrics import assess_risk, progress_rate, quality_score

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("projectOptimization", "codeQualityInsights", "learningInsights")

DEFAULT_FEATURES = {
    "projectOptimization": True,
    "codeAnalysis": True,
    "learningRecommendations": True,
    "riskAssessment": True,
    "predictiveAnalytics": False,
}

_PRIORITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3, None: 4}
_SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}
_ISSUE_EFFORT = {"high": 8, "medium": 4, "low": 2}
_ISSUE_ADVICE = {
    "complexity": "Split complex functions into smaller, focused units",
    "duplicate": "Consolidate duplicated logic into shared helpers",
    "length": "Break up long files and components by responsibility",
    "security": "Schedule a security review of the flagged code paths",
}
_RECOMMENDED_VELOCITY = 3.5


@dataclass
class AnalysisContext:
    projects: list[Project]
    steps: dict[str, list[Step]]
    learnings: list[Learning]
    code_issues: list[CodeIssue]

    @classmethod
    def from_store(cls, store: EntityStore, project_id: str | None = None) -> "AnalysisContext":
        """Snapshot the store, scoped to one project when ``project_id`` is given."""
        if project_id is None:
            state = store.snapshot()
            return cls(state.projects, state.steps, state.learnings, state.code_issues)
        project = store.get_project_by_id(project_id)
        return cls(
            projects=[project] if project else [],
            steps={project_id: store.get_steps_by_project_id(project_id)},
            learnings=store.get_learnings_by_project_id(project_id),
            code_issues=store.get_code_issues_by_project_id(project_id),
        )

    @property
    def all_steps(self) -> list[Step]:
        return [step for steps in self.steps.values() for step in steps]

    def to_payload(self) -> dict:
        return {
            "projects": [p.model_dump(mode="json") for p in self.projects],
            "projectSteps": {
                pid: [s.model_dump(mode="json") for s in steps] for pid, steps in self.steps.items()
            },
            "learnings": [learning.model_dump(mode="json") for learning in self.learnings],
            "codeIssues": [i.model_dump(mode="json") for i in self.code_issues],
        }


@dataclass
class AnalysisOutcome:
    source: str  # "endpoint" | "local"
    result: dict
    features: dict = field(default_factory=dict)


def validate_analysis(data) -> dict:
    if not isinstance(data, dict):
        raise AnalysisValidationError("Analysis result is not an object")
    missing = [key for key in REQUIRED_SECTIONS if not data.get(key)]
    if missing:
        raise AnalysisValidationError(f"Analysis result is missing: {', '.join(missing)}")
    return data


async def request_endpoint_analysis(
    endpoint: str,
    provider: str,
    model: str,
    features: dict,
    context: dict,
    timeout: float | None = None,
) -> dict:
    if not endpoint:
        raise ProviderNotConfiguredError(
            "No custom endpoint configured for external AI provider. Set a Custom Endpoint in AI settings."
        )
    try:
        async with httpx.AsyncClient(timeout=timeout or settings.ai_timeout) as client:
            resp = await client.post(
                endpoint,
                json={"provider": provider, "model": model, "features": features, "context": context},
                headers={"Content-Type": "application/json"},
            )
    except httpx.HTTPError as exc:
        raise translate_httpx_error(exc) from exc
    raise_for_upstream_status(resp)
    try:
        data = resp.json()
    except ValueError as exc:
        raise UpstreamResponseError("Analysis endpoint returned a non-JSON body") from exc
    return validate_analysis(data)


def _suggested_steps(context: AnalysisContext) -> list[dict]:
    open_steps = [s for s in context.all_steps if not s.completed]
    open_steps.sort(key=lambda s: (_PRIORITY_RANK[s.priority], s.created_at))
    return [
        {
            "title": step.title,
            "description": step.description,
            "priority": "high" if step.priority == "critical" else (step.priority or "medium"),
            "estimatedHours": step.estimated_hours or 0,
            "dependencies": [],
        }
        for step in open_steps[:5]
    ]


def _risk_assessment(context: AnalysisContext, rate: float, high_issues: int) -> dict:
    factors, mitigation = [], []
    if high_issues:
        factors.append(f"{high_issues} high-severity code issue(s)")
        mitigation.append("Resolve high-severity code issues before adding features")
    if rate < 60:
        factors.append(f"Only {rate:.0f}% of steps completed")
        mitigation.append("Narrow the scope to the steps on the critical path")
    blocked = [s for s in context.all_steps if s.status == "blocked"]
    if blocked:
        factors.append(f"{len(blocked)} blocked step(s)")
        mitigation.append("Unblock or re-plan blocked steps")
    return {"level": assess_risk(high_issues, rate), "factors": factors, "mitigation": mitigation}


def _timeline(context: AnalysisContext, rate: float) -> dict:
    open_steps = [s for s in context.all_steps if not s.completed]
    remaining_hours = sum(s.estimated_hours or 0 for s in open_steps)
    if not open_steps:
        deadline = "All steps are complete"
    elif remaining_hours:
        deadline = f"About {remaining_hours:g} estimated hours of work remain"
    else:
        deadline = f"{len(open_steps)} step(s) remain at {rate:.0f}% progress"
    return {
        "suggestedDeadline": deadline,
        "criticalPath": [s.title for s in open_steps if s.priority in ("critical", "high")],
        "bottlenecks": [s.title for s in open_steps if s.status == "blocked"],
    }


def _code_quality(issues: list[CodeIssue], enabled: bool) -> dict:
    open_issues = sorted(
        (i for i in issues if not i.resolved), key=lambda i: _SEVERITY_RANK[i.severity]
    )
    return {
        "technicalDebtScore": 100 - quality_score(open_issues),
        "refactoringPriorities": [
            {
                "file": issue.file,
                "reason": issue.description or f"{issue.type} issue",
                "impact": issue.severity,
                "effort": _ISSUE_EFFORT[issue.severity],
            }
            for issue in open_issues
        ]
        if enabled
        else [],
        "architectureRecommendations": list(
            dict.fromkeys(_ISSUE_ADVICE[issue.type] for issue in open_issues)
        ),
        "performanceOptimizations": [i.suggestion for i in open_issues if i.suggestion],
    }


def _learning_insights(context: AnalysisContext, enabled: bool) -> dict:
    failure_tags: dict[str, int] = {}
    for learning in context.learnings:
        if learning.type == "failure":
            for tag in learning.tags:
                failure_tags[tag] = failure_tags.get(tag, 0) + 1
    gaps = sorted(failure_tags, key=lambda tag: -failure_tags[tag])
    current = round(len(context.learnings) / max(1, len(context.projects)), 1)
    improvement = []
    if current < _RECOMMENDED_VELOCITY:
        improvement.append("Record a learning after every completed step")
    if gaps:
        improvement.append("Turn repeated failures into checklists")
    return {
        "skillGaps": gaps,
        "recommendedLearning": [
            {
                "topic": tag,
                "reason": f"Came up in {failure_tags[tag]} failure learning(s)",
                "resources": [],
            }
            for tag in gaps[:3]
        ]
        if enabled
        else [],
        "learningVelocity": {
            "current": current,
            "recommended": _RECOMMENDED_VELOCITY,
            "improvement": improvement,
        },
    }


def local_analysis(context: AnalysisContext, features: dict | None = None) -> dict:
    """Deterministic analysis built from the metrics engine."""
    features = {**DEFAULT_FEATURES, **(features or {})}
    steps = context.all_steps
    rate = progress_rate(steps)
    high_issues = sum(1 for i in context.code_issues if i.severity == "high")

    risk = _risk_assessment(context, rate, high_issues)
    if not features["riskAssessment"]:
        risk["factors"], risk["mitigation"] = [], []
    return {
        "projectOptimization": {
            "suggestedSteps": _suggested_steps(context) if features["projectOptimization"] else [],
            "riskAssessment": risk,
            "timelineOptimization": _timeline(context, rate),
        },
        "codeQualityInsights": _code_quality(context.code_issues, features["codeAnalysis"]),
        "learningInsights": _learning_insights(context, features["learningRecommendations"]),
    }


class AnalysisRunner:
    def __init__(
        self,
        store: EntityStore,
        provider: str,
        model: str,
        endpoint: str = "",
        features: dict | None = None,
        timeout: float | None = None,
    ):
        self.store = store
        self.provider = provider
        self.model = model
        self.endpoint = endpoint
        self.features = {**DEFAULT_FEATURES, **(features or {})}
        self.timeout = timeout

    async def run(self, project_id: str | None = None) -> AnalysisOutcome:
        context = AnalysisContext.from_store(self.store, project_id)
        if not self.endpoint:
            return AnalysisOutcome("local", local_analysis(context, self.features), self.features)

        logger.info(f"Requesting analysis from {self.endpoint} ({self.provider}/{self.model})")
        payload = context.to_payload()
        result = await with_retries(
            lambda: request_endpoint_analysis(
                self.endpoint, self.provider, self.model, self.features, payload, self.timeout
            ),
            operation="analysis",
        )
        return AnalysisOutcome("endpoint", result, self.features)
