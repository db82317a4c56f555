from fastapi.testclient import TestClient

ISSUE = {
    "file": "src/app.py",
    "lines": 420,
    "type": "length",
    "severity": "medium",
    "description": "Module is too long",
    "suggestion": "Split by feature",
}


def test_create_and_list_code_issues(client: TestClient):
    resp = client.post("/api/code-issues", json={**ISSUE, "project_id": "p1"})
    assert resp.status_code == 201
    issue = resp.json()
    assert issue["resolved"] is False
    assert issue["resolved_at"] is None

    client.post("/api/code-issues", json={**ISSUE, "project_id": "p2"})
    assert len(client.get("/api/code-issues").json()) == 2
    filtered = client.get("/api/code-issues", params={"project_id": "p1"}).json()
    assert [i["id"] for i in filtered] == [issue["id"]]


def test_code_issue_validation(client: TestClient):
    assert client.post("/api/code-issues", json={**ISSUE, "lines": 0}).status_code == 422
    assert client.post("/api/code-issues", json={**ISSUE, "type": "style"}).status_code == 422
    assert client.post("/api/code-issues", json={**ISSUE, "severity": "critical"}).status_code == 422


def test_resolve_code_issue(client: TestClient):
    issue = client.post("/api/code-issues", json=ISSUE).json()
    resp = client.post(f"/api/code-issues/{issue['id']}/resolve")
    assert resp.status_code == 200
    assert resp.json()["resolved"] is True
    assert resp.json()["resolved_at"] is not None


def test_update_and_delete_code_issue(client: TestClient):
    issue = client.post("/api/code-issues", json=ISSUE).json()
    resp = client.patch(f"/api/code-issues/{issue['id']}", json={"severity": "high"})
    assert resp.status_code == 200
    assert resp.json()["severity"] == "high"
    assert client.delete(f"/api/code-issues/{issue['id']}").status_code == 200
    assert client.get("/api/code-issues").json() == []


def test_missing_code_issue(client: TestClient):
    assert client.post("/api/code-issues/nope/resolve").status_code == 404
    assert client.patch("/api/code-issues/nope", json={"severity": "low"}).status_code == 404
    assert client.delete("/api/code-issues/nope").status_code == 404
