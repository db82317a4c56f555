"""Tests for project analysis: local fallback, endpoint path and validation."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from planai.config import settings
from planai.services.analysis import (
    REQUIRED_SECTIONS,
    AnalysisContext,
    AnalysisRunner,
    local_analysis,
    validate_analysis,
)
from planai.services.errors import AnalysisValidationError, UpstreamNetworkError
from planai.store.entity_store import EntityStore

ENDPOINT = "https://analysis.example.com/analyze"
REQUEST = httpx.Request("POST", ENDPOINT)

VALID_RESULT = {
    "projectOptimization": {"suggestedSteps": []},
    "codeQualityInsights": {"technicalDebtScore": 10},
    "learningInsights": {"skillGaps": []},
}


def _mock_http(response: httpx.Response | None = None, error: Exception | None = None):
    client = AsyncMock()
    client.__aenter__.return_value = client
    client.__aexit__.return_value = False
    if error is not None:
        client.post.side_effect = error
    else:
        client.post.return_value = response
    return client


def _seed(store: EntityStore) -> str:
    project = store.add_project({"title": "Shop", "description": "Web store", "status": "in-progress"})
    done = store.add_step(project.id, {"title": "Design", "description": "Wireframes"})
    store.add_step(
        project.id,
        {"title": "Checkout", "description": "Payments", "priority": "high", "estimated_hours": 6},
    )
    store.toggle_step_completion(project.id, done.id)
    store.add_code_issue(
        {
            "file": "cart.py",
            "lines": 300,
            "type": "complexity",
            "severity": "high",
            "description": "Nested conditionals",
            "suggestion": "Extract pricing rules",
            "project_id": project.id,
        }
    )
    store.add_learning(
        {
            "title": "Flaky tests",
            "content": "Mocks drifted",
            "type": "failure",
            "tags": ["testing"],
            "project_id": project.id,
        }
    )
    return project.id


# ==================== Validation ====================


class TestValidateAnalysis:
    def test_accepts_complete_result(self):
        assert validate_analysis(VALID_RESULT) is VALID_RESULT

    @pytest.mark.parametrize("missing", REQUIRED_SECTIONS)
    def test_rejects_missing_section(self, missing):
        data = {k: v for k, v in VALID_RESULT.items() if k != missing}
        with pytest.raises(AnalysisValidationError, match=missing):
            validate_analysis(data)

    def test_rejects_non_object(self):
        with pytest.raises(AnalysisValidationError):
            validate_analysis(["projectOptimization"])


# ==================== Local analysis ====================


class TestLocalAnalysis:
    def test_builds_all_sections(self, store: EntityStore):
        project_id = _seed(store)
        result = local_analysis(AnalysisContext.from_store(store, project_id))

        validate_analysis(result)
        optimization = result["projectOptimization"]
        assert [s["title"] for s in optimization["suggestedSteps"]] == ["Checkout"]
        assert optimization["riskAssessment"]["level"] == "medium"
        assert optimization["timelineOptimization"]["criticalPath"] == ["Checkout"]

        quality = result["codeQualityInsights"]
        assert quality["technicalDebtScore"] == 15
        assert quality["refactoringPriorities"][0]["file"] == "cart.py"
        assert quality["performanceOptimizations"] == ["Extract pricing rules"]

        assert result["learningInsights"]["skillGaps"] == ["testing"]

    def test_disabled_features_are_left_empty(self, store: EntityStore):
        project_id = _seed(store)
        features = {"projectOptimization": False, "codeAnalysis": False, "riskAssessment": False}
        result = local_analysis(AnalysisContext.from_store(store, project_id), features)

        assert result["projectOptimization"]["suggestedSteps"] == []
        assert result["projectOptimization"]["riskAssessment"]["factors"] == []
        assert result["codeQualityInsights"]["refactoringPriorities"] == []

    def test_scoped_context(self, store: EntityStore):
        project_id = _seed(store)
        store.add_project({"title": "Other", "description": "Unrelated"})

        scoped = AnalysisContext.from_store(store, project_id)
        assert [p.id for p in scoped.projects] == [project_id]
        assert len(AnalysisContext.from_store(store).projects) == 2

        payload = scoped.to_payload()
        assert set(payload) == {"projects", "projectSteps", "learnings", "codeIssues"}
        assert len(payload["projectSteps"][project_id]) == 2

    @pytest.mark.asyncio
    async def test_runner_without_endpoint_is_local(self, store: EntityStore):
        _seed(store)
        outcome = await AnalysisRunner(store, provider="openai", model="gpt-4o-mini").run()
        assert outcome.source == "local"
        assert outcome.features["predictiveAnalytics"] is False


# ==================== Endpoint analysis ====================


class TestEndpointAnalysis:
    @pytest.mark.asyncio
    async def test_posts_context_to_endpoint(self, store: EntityStore):
        project_id = _seed(store)
        client = _mock_http(httpx.Response(200, json=VALID_RESULT, request=REQUEST))
        runner = AnalysisRunner(store, provider="custom", model="m", endpoint=ENDPOINT)

        with patch("planai.services.analysis.httpx.AsyncClient", return_value=client):
            outcome = await runner.run(project_id)

        assert outcome.source == "endpoint"
        assert outcome.result == VALID_RESULT
        body = client.post.call_args.kwargs["json"]
        assert body["provider"] == "custom"
        assert body["model"] == "m"
        assert body["context"]["projects"][0]["id"] == project_id

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self, store: EntityStore):
        client = _mock_http(error=httpx.ConnectError("refused", request=REQUEST))
        runner = AnalysisRunner(store, provider="custom", model="m", endpoint=ENDPOINT)

        with patch("planai.services.analysis.httpx.AsyncClient", return_value=client):
            with pytest.raises(UpstreamNetworkError):
                await runner.run()

        assert client.post.await_count == 3


# ==================== HTTP ====================


class TestAnalysisAPI:
    def test_local_analysis(self, client: TestClient, store: EntityStore, monkeypatch):
        monkeypatch.setattr(settings, "analysis_endpoint", "")
        project_id = _seed(store)
        resp = client.post("/api/analysis", json={"project_id": project_id})
        assert resp.status_code == 200
        data = resp.json()
        assert data["source"] == "local"
        assert data["project_id"] == project_id
        assert set(REQUIRED_SECTIONS) <= set(data["result"])

    def test_missing_project(self, client: TestClient):
        resp = client.post("/api/analysis", json={"project_id": "nope"})
        assert resp.status_code == 404

    def test_endpoint_from_settings(self, client: TestClient, store: EntityStore):
        _seed(store)
        client.put("/api/settings/ai", json={"analysis_endpoint": ENDPOINT})
        http = _mock_http(httpx.Response(200, json=VALID_RESULT, request=REQUEST))

        with patch("planai.services.analysis.httpx.AsyncClient", return_value=http):
            resp = client.post("/api/analysis", json={})

        assert resp.status_code == 200
        assert resp.json()["source"] == "endpoint"
        assert http.post.call_args.args[0] == ENDPOINT

    def test_incomplete_endpoint_result(self, client: TestClient):
        client.put("/api/settings/ai", json={"analysis_endpoint": ENDPOINT})
        incomplete = {"projectOptimization": {"suggestedSteps": []}}
        http = _mock_http(httpx.Response(200, json=incomplete, request=REQUEST))

        with patch("planai.services.analysis.httpx.AsyncClient", return_value=http):
            resp = client.post("/api/analysis", json={})

        assert resp.status_code == 502
        assert resp.json()["detail"]["reason"] == "invalid_analysis"
        assert http.post.await_count == 1

    def test_endpoint_rate_limited(self, client: TestClient):
        client.put("/api/settings/ai", json={"analysis_endpoint": ENDPOINT})
        limited = httpx.Response(429, json={}, headers={"retry-after": "12.5"}, request=REQUEST)

        with patch("planai.services.analysis.httpx.AsyncClient", return_value=_mock_http(limited)):
            resp = client.post("/api/analysis", json={})

        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "13"
