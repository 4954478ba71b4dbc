"""Shared pytest fixtures for test suite"""
import os
import sys
from pathlib import Path
from typing import Generator

import fakeredis
import httpx
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Test configuration must be in place before the app builds its Settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["BACKEND_URL"] = "http://testserver"
os.environ["INSTAGRAM_CLIENT_ID"] = "ig-client-id"
os.environ["INSTAGRAM_CLIENT_SECRET"] = "ig-client-secret"
os.environ["INSTAGRAM_REDIRECT_URI"] = "http://testserver/api/auth/instagram/callback"
os.environ["INSTAGRAM_WEBHOOK_VERIFY_TOKEN"] = "hook-verify-token"
os.environ["GOOGLE_CLIENT_ID"] = "google-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "google-client-secret"
os.environ["GOOGLE_PROJECT_ID"] = "google-project"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.api.deps import get_instagram_client
from app.core.config import get_settings
from app.db import redis as redis_module
from app.db.helpers import get_or_create_user
from app.db.session import get_db
from app.models import Base
from app.models.user import User
from app.services.auth_service import create_session
from app.services.instagram_client import InstagramClient
from fakes import FakeInstagram


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def settings():
    return get_settings()


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Swap the lazily created Redis client for fakeredis"""
    fake_redis = fakeredis.FakeRedis(decode_responses=True)
    original = redis_module._client
    redis_module._client = fake_redis
    try:
        yield fake_redis
    finally:
        redis_module._client = original


@pytest.fixture(scope="function")
def instagram_api() -> FakeInstagram:
    return FakeInstagram()


@pytest.fixture(scope="function")
def instagram_client(settings, instagram_api) -> InstagramClient:
    """InstagramClient whose HTTP calls go to the scripted FakeInstagram"""
    return InstagramClient(settings, transport=httpx.MockTransport(instagram_api.handler))


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, instagram_client) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, fakeredis and scripted Instagram API"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_instagram_client] = lambda: instagram_client

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    user, _ = get_or_create_user("owner@example.com", name="Account Owner", db=db_session)
    return user


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    """Second user for ownership tests"""
    user, _ = get_or_create_user("someone-else@example.com", name="Someone Else", db=db_session)
    return user


@pytest.fixture(scope="function")
def session_id(test_user: User, mock_redis) -> str:
    """Application session for test_user"""
    return create_session(test_user.id)


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, session_id: str) -> TestClient:
    """Client carrying test_user's session cookie"""
    client.cookies.set("session_id", session_id)
    return client
