"""Tests for normalized error responses."""

from fastapi.testclient import TestClient

from learnchat.main import app


def test_missing_credentials_is_unauthorized():
    client = TestClient(app)
    resp = client.get("/v1/usage/tokens")
    assert resp.status_code == 401
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["error"]["request_id"] == rid
    assert body["error"]["message"] == "ログインが必要です"
    assert body["detail"]


def test_message_follows_accept_language():
    client = TestClient(app)
    resp = client.get("/v1/usage/tokens", headers={"Accept-Language": "en-US,en;q=0.9"})
    assert resp.json()["error"]["message"] == "Authentication required"


def test_unknown_account_is_unauthorized():
    client = TestClient(app)
    resp = client.get("/v1/usage/tokens", headers={"X-User-Id": "nobody"})
    assert resp.status_code == 401


def test_not_found_echoes_request_id(individual):
    client = TestClient(app)
    resp = client.get(
        "/v1/conversations/missing",
        headers={"X-User-Id": individual.user_id, "x-request-id": "rid-404"},
    )
    assert resp.status_code == 404
    assert resp.headers["x-request-id"] == "rid-404"
    body = resp.json()
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["error"]["request_id"] == "rid-404"


def test_other_users_conversation_is_forbidden(individual, free_individual):
    client = TestClient(app)
    created = client.post("/v1/conversations", headers={"X-User-Id": individual.user_id}, json={"mode": "explanation"})
    assert created.status_code == 201

    resp = client.get(f"/v1/conversations/{created.json()['id']}", headers={"X-User-Id": free_individual.user_id})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


def test_invalid_body_is_validation_error(individual):
    client = TestClient(app)
    resp = client.post("/v1/conversations", headers={"X-User-Id": individual.user_id}, json={"mode": "poetry"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert "body.mode" in body["error"]["details"]["fields"]
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")


def test_unknown_route_uses_error_shape():
    client = TestClient(app)
    resp = client.get("/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_health_probes():
    client = TestClient(app)
    assert client.get("/healthz").json() == {"status": "ok"}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json() == {"status": "ok"}


def test_requests_are_counted():
    client = TestClient(app)
    client.get("/healthz")
    metrics = client.get("/metrics").text
    assert 'http_requests_total{method="GET",path="/healthz",status="200"} 1.0' in metrics
