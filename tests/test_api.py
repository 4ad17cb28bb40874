"""
Tests for the HTTP API.
Run with: pytest tests/test_api.py -v
"""
import pytest
from fastapi.testclient import TestClient


def _app(sampler_factory):
    from smartproctor.main import create_app
    from smartproctor.session.registry import SessionRegistry
    from smartproctor.storage.config_store import MemoryConfigStore
    registry = SessionRegistry(sampler_factory=sampler_factory, run_scheduler=False)
    return create_app(registry=registry, config_store=MemoryConfigStore())


@pytest.fixture
def client(scripted_sampler, scenario_a):
    app = _app(lambda config, seed: scripted_sampler(default=scenario_a))
    with TestClient(app) as c:
        yield c


def _tick(client, session_id, times=1):
    controller = client.app.state.registry.get(session_id)
    for _ in range(times):
        controller.tick()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["dependencies"]["configStore"] == "memory"
        assert body["sessions"] == {"total": 0, "active": 0}


class TestSessions:
    def test_start_session(self, client):
        resp = client.post("/sessions", json={"session_id": "s1"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["sessionId"] == "s1"
        assert body["state"] == "ACTIVE"
        assert body["assessment"]["suspicionScore"] == 0

    def test_duplicate_session_conflicts(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        resp = client.post("/sessions", json={"session_id": "s1"})
        assert resp.status_code == 409

    @pytest.mark.parametrize("payload", [
        {"profile": "level9"},
        {"tick_interval_ms": 0},
        {"alert_capacity": 0},
    ])
    def test_invalid_config_rejected(self, client, payload):
        resp = client.post("/sessions", json=payload)
        assert resp.status_code == 422

    def test_sampler_unavailable(self, scripted_sampler):
        app = _app(lambda config, seed: scripted_sampler(fail_open=True))
        with TestClient(app) as client:
            resp = client.post("/sessions", json={"session_id": "s1"})
            assert resp.status_code == 503
            assert client.get("/sessions/s1").status_code == 404

    def test_session_state_and_alerts(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        _tick(client, "s1", times=2)

        state = client.get("/sessions/s1").json()
        assert state["violationCount"] == 2
        assert state["assessment"]["threatLevel"] == "HIGH"

        alerts = client.get("/sessions/s1/alerts", params={"limit": 2}).json()
        assert len(alerts) == 2
        assert alerts[0]["type"] == "behavioral_anomaly"

        assert len(client.get("/sessions").json()) == 1

    def test_merged_feed(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        client.post("/sessions", json={"session_id": "s2"})
        _tick(client, "s1")
        _tick(client, "s2")
        feed = client.get("/alerts", params={"limit": 10}).json()
        assert len(feed) == 6
        assert {item["sessionId"] for item in feed} == {"s1", "s2"}

    def test_stop_session(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        _tick(client, "s1")
        first = client.post("/sessions/s1/stop")
        assert first.status_code == 200
        summary = first.json()
        assert summary["violationCount"] == 1
        assert summary["finalSuspicionScore"] == 70
        assert summary["report"]["riskLevel"] in ("MINIMAL", "LOW", "MEDIUM", "HIGH", "CRITICAL")

        second = client.post("/sessions/s1/stop")
        assert second.json()["stoppedAt"] == summary["stoppedAt"]
        assert client.get("/sessions/s1").json()["state"] == "STOPPED"

    def test_unknown_session(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert client.get("/sessions/nope/alerts").status_code == 404
        assert client.post("/sessions/nope/stop").status_code == 404
        assert client.delete("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/recordings").status_code == 404

    def test_delete_session(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        _tick(client, "s1")
        controller = client.app.state.registry.get("s1")

        assert client.delete("/sessions/s1").status_code == 204
        assert controller.summary is not None
        assert client.get("/sessions/s1").status_code == 404
        assert client.get("/health").json()["sessions"] == {"total": 0, "active": 0}

    def test_create_stop_delete_cycle_leaves_nothing(self, client):
        for i in range(20):
            client.post("/sessions", json={"session_id": f"s{i}"})
            client.post(f"/sessions/s{i}/stop")
            assert client.delete(f"/sessions/s{i}").status_code == 204
        assert client.get("/sessions").json() == []

    def test_prune_stopped_sessions(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        client.post("/sessions", json={"session_id": "s2"})
        client.post("/sessions/s1/stop")

        resp = client.delete("/sessions")
        assert resp.status_code == 200
        assert resp.json() == {"removed": 1}
        assert [s["sessionId"] for s in client.get("/sessions").json()] == ["s2"]

    def test_recordings(self, client):
        client.post("/sessions", json={"session_id": "s1"})
        resp = client.post("/sessions/s1/recordings")
        assert resp.status_code == 200
        assert resp.json()["recordings"] == 1

        client.post("/sessions/s1/recordings")
        summary = client.post("/sessions/s1/stop").json()
        assert summary["report"]["confidence"] == 80.0
        assert client.post("/sessions/s1/recordings").status_code == 409


class TestConfig:
    def test_put_get_delete(self, client):
        resp = client.put("/config/analysis_url", json={"value": "http://analysis:9000"})
        assert resp.status_code == 200
        assert client.get("/config/analysis_url").json()["value"] == "http://analysis:9000"

        client.put("/config/retries", json={"value": 3})
        assert client.get("/config").json() == {"analysis_url": "http://analysis:9000", "retries": 3}

        assert client.delete("/config/analysis_url").status_code == 204
        assert client.get("/config/analysis_url").status_code == 404

        assert client.delete("/config").status_code == 204
        assert client.get("/config").json() == {}
