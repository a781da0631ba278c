"""
test_api.py — HTTP read/write API, live push stream and health probes.

Each test builds a fresh app against its own SQLite file (the store is
closed when the TestClient lifespan ends).

Covers:
    • POST /api/v1/alerts  — 201, 400 envelopes, 413 body limit (declared and chunked)
    • GET  /api/v1/alerts  — newest first, limit bounds from the app's config
    • WS   /api/v1/ws/alerts — "alert" events after persistence
    • /, /health, /health/ready

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from leo.app.main import create_app

from conftest import make_settings


ALERTS = "/api/v1/alerts"
STREAM = "/api/v1/ws/alerts"


@pytest.fixture
def client(tmp_path):
    app = create_app(make_settings(tmp_path))
    with TestClient(app) as c:
        yield c


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Write API
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAlert:

    def test_minimal_payload(self, client, paris_raw):
        resp = client.post(ALERTS, json=paris_raw)
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"]
        assert body["type"] == "SOS"
        assert body["message"] == "Signal received"
        assert body["latitude"] == 48.85
        assert body["longitude"] == 2.35
        assert body["intensity"] == 1
        assert body["source"] == "unknown"
        assert body["city"] == "Unknown"
        assert body["timestamp"]

    def test_full_payload(self, client, full_raw):
        body = client.post(ALERTS, json=full_raw).json()
        assert body["type"] == "MEDICAL"
        assert body["city"] == "Chamonix"
        assert body["timestamp"].startswith("2024-07-14T10:30:00")

    def test_invalid_coordinates(self, client):
        resp = client.post(ALERTS, json={"lat": "abc", "lng": 2.0})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["message"] == "invalid coordinates"
        assert error["details"]["field"] == "latitude"

    def test_error_carries_request_id(self, client):
        resp = client.post(
            ALERTS, json={"lng": 2.0}, headers={"X-Request-ID": "req-42"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["request_id"] == "req-42"

    @pytest.mark.parametrize("content", [b"[1, 2]", b"{not json", b'"sos"'])
    def test_non_object_body(self, client, content):
        resp = client.post(
            ALERTS, content=content, headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_rejected_alert_not_stored(self, client):
        client.post(ALERTS, json={"lat": 1.0})
        assert client.get(ALERTS).json() == []

    def test_body_limit(self, tmp_path):
        app = create_app(make_settings(tmp_path, MAX_BODY_BYTES=64))
        with TestClient(app) as c:
            resp = c.post(ALERTS, json={"lat": 1, "lng": 2, "msg": "x" * 200})
            assert resp.status_code == 413
            assert resp.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"
            assert c.get(ALERTS).json() == []

    def test_chunked_body_limit(self, tmp_path):
        app = create_app(make_settings(tmp_path, MAX_BODY_BYTES=64))

        def chunks():
            yield b'{"lat": 1, "lng": 2, "msg": "'
            for _ in range(10):
                yield b"x" * 32
            yield b'"}'

        with TestClient(app) as c:
            resp = c.post(
                ALERTS, content=chunks(), headers={"Content-Type": "application/json"},
            )
            assert resp.status_code == 413
            assert resp.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"
            assert c.get(ALERTS).json() == []

    def test_timestamp_out_of_range_after_offset(self, client):
        resp = client.post(
            ALERTS, json={"lat": 1, "lng": 2, "ts": "9999-12-31T23:00:00-05:00"},
        )
        assert resp.status_code == 201
        assert resp.json()["timestamp"]

    def test_request_id_headers(self, client, paris_raw):
        resp = client.post(ALERTS, json=paris_raw, headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert resp.headers["X-Process-Time"].endswith("ms")


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Read API
# ═══════════════════════════════════════════════════════════════════════════

class TestListAlerts:

    def test_empty(self, client):
        resp = client.get(ALERTS)
        assert resp.status_code == 200
        assert resp.json() == []

    def test_newest_first(self, client):
        for day in (3, 1, 2):
            client.post(ALERTS, json={
                "lat": day, "lng": day, "msg": f"day{day}",
                "ts": f"2024-02-0{day}T00:00:00Z",
            })
        messages = [a["message"] for a in client.get(ALERTS).json()]
        assert messages == ["day3", "day2", "day1"]

    def test_limit(self, client):
        for n in range(4):
            client.post(ALERTS, json={"lat": n, "lng": n})
        assert len(client.get(ALERTS, params={"limit": 2}).json()) == 2

    @pytest.mark.parametrize("limit", [0, -5, 10_000])
    def test_limit_out_of_range(self, client, limit):
        assert client.get(ALERTS, params={"limit": limit}).status_code == 400

    def test_limit_capped_by_app_config(self, tmp_path):
        app = create_app(make_settings(tmp_path, RECENT_ALERTS_LIMIT=3))
        with TestClient(app) as c:
            for n in range(5):
                c.post(ALERTS, json={"lat": n, "lng": n})
            assert len(c.get(ALERTS).json()) == 3
            assert len(c.get(ALERTS, params={"limit": 3}).json()) == 3
            resp = c.get(ALERTS, params={"limit": 5})
            assert resp.status_code == 400
            assert resp.json()["error"]["details"]["field"] == "limit"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Push stream
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertStream:

    def test_viewer_receives_new_alert(self, client, full_raw):
        with client.websocket_connect(STREAM) as ws:
            created = client.post(ALERTS, json=full_raw).json()
            event = ws.receive_json()
        assert event["event"] == "alert"
        assert event["data"]["id"] == created["id"]
        assert event["data"]["type"] == "MEDICAL"
        assert event["data"]["latitude"] == 45.8326

    def test_each_alert_once_in_order(self, client):
        with client.websocket_connect(STREAM) as ws:
            ids = [
                client.post(ALERTS, json={"lat": n, "lng": n}).json()["id"]
                for n in range(3)
            ]
            received = [ws.receive_json()["data"]["id"] for _ in range(3)]
        assert received == ids

    def test_two_viewers_both_receive(self, client, paris_raw):
        with client.websocket_connect(STREAM) as ws1, client.websocket_connect(STREAM) as ws2:
            created = client.post(ALERTS, json=paris_raw).json()
            assert ws1.receive_json()["data"]["id"] == created["id"]
            assert ws2.receive_json()["data"]["id"] == created["id"]

    def test_rejected_alert_not_pushed(self, client, paris_raw):
        with client.websocket_connect(STREAM) as ws:
            client.post(ALERTS, json={"lat": "abc", "lng": 1})
            good = client.post(ALERTS, json=paris_raw).json()
            # the first event seen is the valid one
            assert ws.receive_json()["data"]["id"] == good["id"]

    def test_disconnect_unregisters(self, client, paris_raw):
        with client.websocket_connect(STREAM):
            pass
        assert client.get("/").json()["runtime"]["viewers"] == 0
        assert client.post(ALERTS, json=paris_raw).status_code == 201


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Root & health
# ═══════════════════════════════════════════════════════════════════════════

class TestServiceEndpoints:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "LEO Alert Relay"
        assert body["runtime"]["mqtt"]["enabled"] is False
        assert body["runtime"]["firms"]["enabled"] is False

    def test_unknown_route_uses_error_envelope(self, client):
        resp = client.get("/api/v1/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_liveness(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_readiness(self, client):
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        names = {c["name"] for c in body["components"]}
        assert names == {"alert_store", "mqtt", "firms", "pipeline"}
