import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from analysis_engine.api.routes import router
from analysis_engine.cache.redis_client import MemoryBackend
from analysis_engine.config import Settings
from analysis_engine.orchestrator.jobs import JobManager
from analysis_engine.services import Services

from conftest import default_handlers


@pytest.fixture
def make_client():
    clients = []

    def _make(**settings) -> TestClient:
        app = FastAPI()
        app.include_router(router)
        app.state.services = Services(
            Settings(scheduler_enabled=False, batch_pacing_ms=0, **settings),
            MemoryBackend(),
            handlers=default_handlers(),
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


def test_analysis_round_trip(make_client):
    client = make_client()
    assert client.get("/api/analysis/ITC").status_code == 404

    r = client.post("/api/analysis/itc")
    assert r.status_code == 200
    assert r.json()["verdict"]["score"] == 72

    body = client.get("/api/analysis/ITC").json()
    assert body["verdict"]["entity_id"] == "ITC"
    assert body["stale"] is False
    assert body["freshness"]["entity_id"] == "ITC"

    assert client.get("/api/analysis").json()["count"] == 1


def test_missing_mandatory_inputs_is_422(make_client):
    client = make_client(tool_overrides={"get_fundamentals": {"enabled": False}})
    r = client.post("/api/analysis/ITC")
    assert r.status_code == 422
    assert r.json()["detail"]["missing"] == ["fundamentals"]
    assert client.get("/api/analysis/ITC").status_code == 404


def test_tools_listing_and_invoke(make_client):
    client = make_client()
    tools = client.get("/api/tools").json()["tools"]
    by_name = {t["name"]: t for t in tools}
    assert by_name["get_technicals"]["source_class"] == "yahoo"
    assert by_name["get_technicals"]["config"]["enabled"] is True

    ok = client.post("/api/tools/get_stock_news", json={"query": "ITC"}).json()
    assert ok["success"] is True
    assert ok["meta"]["source_class"] == "google_news"

    bad = client.post("/api/tools/get_weather", json={}).json()
    assert bad["success"] is False
    assert bad["error"] == {"code": "UNKNOWN", "message": "Unknown tool: get_weather", "retryable": False}


def test_job_endpoints(make_client):
    client = make_client()
    r = client.post("/api/jobs", json={"entity_ids": ["ITC"], "skip_fresh": False})
    assert r.status_code == 200
    job_id = r.json()["job"]["job_id"]

    status = client.get(f"/api/jobs/{job_id}/status")
    assert status.status_code == 200
    assert status.json()["status"] in ("pending", "running", "completed")
    assert any(j["job_id"] == job_id for j in client.get("/api/jobs").json()["jobs"])
    assert client.get("/api/jobs/missing/status").status_code == 404
    assert client.post("/api/jobs/missing/cancel").status_code == 404


def test_cache_and_scheduler_endpoints(make_client):
    client = make_client()
    client.post("/api/tools/get_stock_thesis", json={"query": "ITC"})
    stats = client.get("/api/cache/stats").json()
    assert set(stats) == {"durable", "executor", "rate_limits"}
    assert client.post("/api/cache/cleanup").json() == {"removed": 0}
    assert client.get("/api/scheduler").json() == {"running": False, "jobs": []}


@pytest.mark.parametrize("header, code", [
    (None, 401),
    ("Bearer wrong", 401),
    ("Bearer s3cret", 200),
])
def test_bearer_token_gate(make_client, header, code):
    client = make_client(api_token="s3cret")
    headers = {"Authorization": header} if header else {}
    assert client.get("/api/tools", headers=headers).status_code == code


def test_adhoc_analysis_leaves_a_running_batch_pass_alone(make_client, monkeypatch):
    client = make_client()
    svc = client.app.state.services
    cleared = []
    monkeypatch.setattr(svc.executor, "clear_request_cache", lambda: cleared.append(1))

    monkeypatch.setattr(JobManager, "busy", property(lambda self: True))
    assert client.post("/api/analysis/ITC").status_code == 200
    assert cleared == []

    monkeypatch.setattr(JobManager, "busy", property(lambda self: False))
    assert client.post("/api/analysis/ITC").status_code == 200
    assert cleared == [1]
