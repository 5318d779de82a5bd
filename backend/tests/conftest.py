"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.sync import get_sync_service
from database import Base
from main import app
from services.sync_service import SyncService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    checking_account,
    item,
    second_item,
)
from tests.fixtures.mocks import MockDataSourceClient


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    """Sessionmaker for services that open their own sessions."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="mock_client")
def mock_client_fixture():
    """An aggregator client with nothing scripted (every stream is empty)."""
    return MockDataSourceClient()


@pytest.fixture(name="sync_service")
def sync_service_fixture(mock_client, session_factory):
    return SyncService(client=mock_client, session_factory=session_factory, max_workers=1)


@pytest.fixture(name="client")
def client_fixture(sync_service):
    """Create a test client whose sync service uses the test database."""
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
