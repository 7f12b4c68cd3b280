from datetime import datetime


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "backend": "backend-test", "port": 9090}


def test_health_without_storage(broken_client):
    r = broken_client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_test_db_success(client):
    r = client.get("/test-db")
    assert r.status_code == 200
    j = r.json()
    assert j["status"] == "success"
    assert j["message"]
    datetime.fromisoformat(j["serverTime"])


def test_test_db_failure(broken_client):
    r = broken_client.get("/test-db")
    assert r.status_code == 500
    j = r.json()
    assert j["status"] == "error"
    assert j["details"]


def test_init_db_creates_table(settings, tmp_path):
    from fastapi.testclient import TestClient
    from ingest.app import create_app

    fresh = settings.model_copy(update={"database_url": f"sqlite:///{tmp_path / 'fresh.db'}"})
    client = TestClient(create_app(fresh))

    assert client.post("/upload").status_code == 500
    r = client.get("/init-db")
    assert r.status_code == 200
    assert r.json()["status"] == "success"
    # idempotent
    assert client.get("/init-db").status_code == 200
    assert client.post("/upload").status_code == 200


def test_init_db_failure(broken_client):
    r = broken_client.get("/init-db")
    assert r.status_code == 500
    j = r.json()
    assert j["status"] == "error"
    assert j["details"]


def test_unknown_route_is_404(client):
    assert client.get("/nope").status_code == 404
    assert client.get("/upload").status_code == 405
