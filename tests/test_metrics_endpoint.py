from fastapi.testclient import TestClient

from ingest.app import create_app
from ingest.monitoring import RequestMetrics


def test_metrics_endpoint_returns_prometheus_format(client):
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "text/plain" in r.headers.get("content-type", "")
    assert "http_request_duration_seconds" in r.text
    assert "python_info" in r.text


def test_requests_recorded_by_route_pattern(client):
    client.post("/upload", files={"image": ("a.png", b"abc", "image/png")})
    client.post("/api/a")
    client.get("/health")
    client.get("/no-such-path")

    text = client.get("/metrics").text
    assert 'http_request_duration_seconds_count{method="POST",route="/upload",status_code="200"} 1.0' in text
    assert 'http_request_duration_seconds_count{method="POST",route="/api/a",status_code="200"} 1.0' in text
    assert 'http_request_duration_seconds_count{method="GET",route="/health",status_code="200"} 1.0' in text
    assert 'http_request_duration_seconds_count{method="GET",route="/no-such-path",status_code="404"} 1.0' in text
    assert 'http_requests_total{method="GET",route="/health",status_code="200"} 1.0' in text


def test_storage_errors_recorded_as_500(broken_client):
    broken_client.get("/test-db")
    text = broken_client.get("/metrics").text
    assert 'http_request_duration_seconds_count{method="GET",route="/test-db",status_code="500"} 1.0' in text


def test_each_app_has_its_own_registry(settings, storage):
    a = TestClient(create_app(settings, storage=storage))
    b = TestClient(create_app(settings, storage=storage))
    a.get("/health")
    assert 'route="/health"' in a.get("/metrics").text
    assert 'route="/health"' not in b.get("/metrics").text


def test_metrics_disabled(settings, storage):
    disabled = settings.model_copy(update={"prometheus_enabled": False})
    c = TestClient(create_app(disabled, storage=storage, metrics=RequestMetrics(process_collectors=False)))
    c.get("/health")
    r = c.get("/metrics")
    assert r.status_code == 404
    assert r.text == "Prometheus disabled"


def test_health_still_works(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
