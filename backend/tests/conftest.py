from pathlib import Path
from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient

from attachments import AttachmentStorage
from config import Settings
from database import DocumentStore
from main import create_app
from security import CredentialCodec
from tasks import TaskRepository
from users import UserService

TEST_SECRET_KEY = "test-secret-key-for-testing-only"


@pytest.fixture(scope="function")
def test_settings(tmp_path: Path) -> Settings:
    """
    Create test settings rooted in a throwaway directory.
    """
    return Settings(
        _env_file=None,
        APP_ROOT=tmp_path,
        SECRET_KEY=TEST_SECRET_KEY,
        ENVIRONMENT="test",
        BCRYPT_ROUNDS=4,
        MAX_UPLOAD_SIZE_MB=1,
    )


@pytest.fixture(scope="function")
def codec(test_settings: Settings) -> CredentialCodec:
    return CredentialCodec(test_settings)


@pytest.fixture(scope="function")
def store(test_settings: Settings) -> DocumentStore:
    store = DocumentStore(test_settings.db_file)
    store.initialize()
    return store


@pytest.fixture(scope="function")
def attachment_storage(test_settings: Settings) -> AttachmentStorage:
    return AttachmentStorage(test_settings.uploads_dir, test_settings.max_upload_bytes)


@pytest.fixture(scope="function")
def user_service(store: DocumentStore, codec: CredentialCodec) -> UserService:
    return UserService(store, codec)


@pytest.fixture(scope="function")
def task_repo(store: DocumentStore, attachment_storage: AttachmentStorage) -> TaskRepository:
    return TaskRepository(store, attachment_storage)


@pytest.fixture(scope="function")
def client(test_settings: Settings) -> TestClient:
    return TestClient(create_app(test_settings))


@pytest.fixture(scope="function")
def register(client: TestClient) -> Callable[..., Dict[str, str]]:
    """
    Register a user through the API and return its Authorization headers.
    """

    def _register(username: str = "alice", password: str = "pw1234") -> Dict[str, str]:
        response = client.post(
            "/api/auth/register", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _register
