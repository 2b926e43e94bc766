"""
API Tests
=========
HTTP surface of main.app through FastAPI's TestClient.
Real maintenance runs against temp workspaces; no network calls.
"""
import pytest
from fastapi.testclient import TestClient

from main import app


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def maintenance(monkeypatch, tmp_path):
    handler = app.state.workflows.get("code-maintenance").handler
    monkeypatch.setattr(handler, "workspace_root", str(tmp_path))
    monkeypatch.setattr(handler, "allow_command_overrides", True)
    return handler


def test_health_lists_workflows(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "workflows": ["code-maintenance"]}


def test_list_workflows_includes_stages(client):
    resp = client.get("/workflows")
    assert resp.status_code == 200
    assert resp.json()["workflows"] == [
        {"name": "code-maintenance", "stages": ["fix", "verify", "report", "deliver"]},
    ]


def test_unknown_workflow_is_404(client):
    resp = client.post("/workflows/nope/runs", json={"payload": {}})
    assert resp.status_code == 404


def test_run_workflow_and_poll_progress(client, maintenance, tmp_path):
    (tmp_path / "app.txt").write_text("old\n")
    resp = client.post("/workflows/code-maintenance/runs", json={
        "run_id": "api-run-1",
        "payload": {
            "workspace": str(tmp_path),
            "fixes": [{"id": "fix-1", "file": "app.txt", "search": "old", "replace": "new"}],
            "build_command": "grep -q new app.txt",
            "test_command": "true",
        },
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["run_id"] == "api-run-1"
    assert body["outcome"]["status"] == "completed"
    assert body["outcome"]["data"]["rolled_back"] is False

    progress = client.get("/runs/api-run-1")
    assert progress.status_code == 200
    state = progress.json()
    assert state["status"] == "completed"
    assert state["progress"] == 100
    assert [s["name"] for s in state["stages"]] == ["fix", "verify", "report", "deliver"]


def test_shell_overrides_and_foreign_workspaces_are_refused(client, maintenance, tmp_path):
    maintenance.allow_command_overrides = False
    (tmp_path / "app.txt").write_text("old\n")

    resp = client.post("/workflows/code-maintenance/runs", json={
        "payload": {"workspace": str(tmp_path), "fixes": [], "test_command": "touch pwned"},
    })
    assert resp.json()["outcome"]["status"] == "failed"
    assert "test_command not accepted" in resp.json()["outcome"]["error"]
    assert not (tmp_path / "pwned").exists()

    resp = client.post("/workflows/code-maintenance/runs", json={"payload": {"workspace": "/", "fixes": []}})
    assert resp.json()["outcome"]["status"] == "failed"
    assert "outside" in resp.json()["outcome"]["error"]


def test_invalid_payload_returns_failed_outcome(client):
    resp = client.post("/workflows/code-maintenance/runs", json={"payload": {}})
    assert resp.status_code == 200
    assert resp.json()["outcome"]["status"] == "failed"


def test_unknown_run_is_404(client):
    assert client.get("/runs/does-not-exist").status_code == 404


def test_resilience_endpoints(client):
    breaker = app.state.resilience.breaker
    for _ in range(breaker.config_for("api-test").failure_threshold):
        breaker.record_failure("api-test")

    circuits = client.get("/resilience/circuits").json()["circuits"]
    assert circuits["api-test"]["state"] == "open"

    reset = client.post("/resilience/circuits/api-test/reset")
    assert reset.status_code == 200
    assert reset.json()["status"] == {"state": "closed", "failures": 0}

    limits = client.get("/resilience/rate-limits")
    assert limits.status_code == 200
    assert "rate_limits" in limits.json()


def test_metrics_endpoint_exposes_workflow_collectors(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "autoheal_workflow_runs_total" in resp.text
    assert "autoheal_workflow_stage_duration_seconds" in resp.text
