import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app
from app.services.content_store import ContentStore
from app.services.metadata_store import MetadataStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        app_env="test",
        upload_path=tmp_path / "uploads",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        max_file_size=1024,
        max_files=3,
        hash_uploads=True,
        log_level="DEBUG",
    )


@pytest.fixture
def upload_dir(settings):
    return settings.upload_path


@pytest.fixture
def client(settings):
    # the context manager runs the lifespan: schema, upload dir, shutdown close
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def store(tmp_path):
    metadata = MetadataStore(f"sqlite:///{tmp_path / 'store.db'}")
    metadata.start()
    yield metadata
    metadata.close()


@pytest.fixture
def content_store(tmp_path):
    return ContentStore(tmp_path / "content", max_file_size=1024, max_files=3)


@pytest.fixture
def registered_user(client):
    response = client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "alice@x.com", "password": "pw1"},
    )
    assert response.status_code == 201, response.text
    return response.json()
