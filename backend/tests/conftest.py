"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.plaid import _get_plaid_client, get_token_cipher
from api.webhooks import get_verification_policy
from database import Base, get_db
from main import app
from services.webhook_verifier import PlaidJwtVerifier, WebhookVerificationPolicy
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    cipher,
    item_service,
    link_session,
    plaid_item,
)
from tests.fixtures.mocks import MockPlaidClient


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(tmp_path):
    """Sessionmaker on a SQLite file, for tests that need independent sessions."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'plaid.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def mock_plaid_client():
    """Create a mock Plaid client."""
    return MockPlaidClient()


@pytest.fixture
def verification_policy(mock_plaid_client):
    """Fail-open policy: unsigned webhooks are processed."""
    return WebhookVerificationPolicy(PlaidJwtVerifier(mock_plaid_client), required=False)


@pytest.fixture(name="client")
def client_fixture(db, mock_plaid_client, cipher, verification_policy):
    """Create a test client with the test database and mocked Plaid."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[_get_plaid_client] = lambda: mock_plaid_client
    app.dependency_overrides[get_token_cipher] = lambda: cipher
    app.dependency_overrides[get_verification_policy] = lambda: verification_policy
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
