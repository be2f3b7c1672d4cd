# tests/conftest.py
import pytest
from unittest.mock import MagicMock

import httpx
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from genflow.main import app
from genflow.db.database import Base

# Import models so metadata knows about all tables
import genflow.models  # noqa: F401

from genflow.services import encryption_service
from genflow.services.encryption_service import EncryptionService
from genflow.services.credential_service import CredentialService
from genflow.services.media_pipeline import MediaPipeline
from genflow.services.rate_limiter import SlidingWindowRateLimiter
from genflow.services.retry_client import RetryAwareClient, RetryConfig
from genflow.services.storage import UploadResult

TEST_USER_ID = "user_test123"


@pytest.fixture
def anyio_backend():
    """The services use asyncio APIs directly, so run async tests on asyncio."""
    return "asyncio"


@pytest.fixture(scope="session")
def engine():
    """Create an in-memory SQLite database shared across tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clean_db(engine):
    """Reset all tables before each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def db(engine):
    """Return a new SQLAlchemy session for each test."""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def encryption(monkeypatch):
    """EncryptionService with a throwaway key, also installed as the global instance."""
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    service = EncryptionService()
    monkeypatch.setattr(encryption_service, "_encryption_service", service)
    return service


@pytest.fixture
def credentials(db, encryption):
    """CredentialService with an API key stored for TEST_USER_ID."""
    service = CredentialService(db, encryption)
    service.store_api_key(TEST_USER_ID, "sk-test-key")
    return service


class FakeUploader:
    """Records uploads instead of talking to S3."""

    def __init__(self):
        self.uploads = []

    def __call__(self, data: bytes, key: str, content_type: str) -> UploadResult:
        self.uploads.append((key, content_type, len(data)))
        return UploadResult(key=key, url=f"https://cdn.test/{key}", size_bytes=len(data))


class RecordingSleep:
    """Async sleep replacement that records requested delays in seconds."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_pipeline(db, uploader, sleep):
    """Build a MediaPipeline whose HTTP calls go to an httpx.MockTransport ``handler``."""

    def _make(handler, config: RetryConfig = RetryConfig(base_delay_ms=100, max_delay_ms=1000), rate_limiter=None):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = RetryAwareClient(http_client, config, sleep=sleep)
        return MediaPipeline(
            db,
            client,
            rate_limiter=rate_limiter if rate_limiter is not None else SlidingWindowRateLimiter(db),
            uploader=uploader,
            base_url="https://gen.test",
        )

    return _make


@pytest.fixture
def override_auth():
    """Replace bearer-token auth with a fixed test user."""
    async def mock_get_current_user_id():
        return TEST_USER_ID
    return mock_get_current_user_id


@pytest.fixture
def job_runner():
    """Stand-in for the background runner; routes only schedule work on it."""
    return MagicMock()


@pytest.fixture
def client(db, override_auth, job_runner):
    """FastAPI test client that routes all DB deps to the test session."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    from genflow.db.database import get_db as db_get_db
    from genflow.auth.clerk import get_current_user_id, get_optional_user_id
    from genflow.services.job_runner import get_job_runner

    app.dependency_overrides[db_get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = override_auth
    app.dependency_overrides[get_optional_user_id] = override_auth
    app.dependency_overrides[get_job_runner] = lambda: job_runner

    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
