"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from services.sync_orchestrator import KeyedSyncLock
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    credential,
    instrument,
    owner,
    second_account,
)
from tests.fixtures.mocks import (
    MockBrokerageClient,
    SAMPLE_ACCOUNTS,
    SAMPLE_BALANCES,
    SAMPLE_HOLDINGS,
    SAMPLE_INSTRUMENTS,
)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="mock_client")
def mock_client_fixture():
    """Mock brokerage client with sample accounts, holdings and catalog."""
    return MockBrokerageClient(
        accounts=SAMPLE_ACCOUNTS,
        balances=SAMPLE_BALANCES,
        holdings=SAMPLE_HOLDINGS,
        instruments=SAMPLE_INSTRUMENTS,
    )


@pytest.fixture(name="sync_lock")
def sync_lock_fixture():
    """Fresh in-flight map so tests never share lock state."""
    return KeyedSyncLock()
