from fastapi.testclient import TestClient


def test_health_endpoint(test_client: TestClient):
    response = test_client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"


def test_status_reports_backends(test_client: TestClient):
    body = test_client.get("/api/status").json()
    assert body["ready"] is True
    assert body["sessionBackend"] in {"memory", "redis"}
    assert "crmApiBaseUrl" in body


def test_request_id_is_echoed(test_client: TestClient):
    response = test_client.get("/api/health", headers={"X-Correlation-Id": "abc-123"})
    assert response.headers["X-Request-Id"] == "abc-123"


def test_request_id_is_generated(test_client: TestClient):
    response = test_client.get("/api/health")
    assert len(response.headers["X-Request-Id"]) == 32
