import pytest
from fastapi.testclient import TestClient

from ingest.app import create_app
from ingest.config import Settings
from ingest.db import Storage

BROKEN_DB_URL = "sqlite:////nonexistent-ingest-dir/ingest.db"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'ingest_test.db'}",
        backend_name="backend-test",
        port=9090,
        log_as_json=False,
    )


@pytest.fixture
def storage(settings):
    s = Storage.from_settings(settings)
    s.ensure_schema()
    yield s
    s.dispose()


@pytest.fixture
def app(settings, storage):
    return create_app(settings, storage=storage)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def broken_client(settings):
    broken = settings.model_copy(update={"database_url": BROKEN_DB_URL})
    return TestClient(create_app(broken), raise_server_exceptions=False)
