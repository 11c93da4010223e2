"""
Pytest configuration and fixtures for ballot service tests.

This module provides:
- Test environment variables (set before the application is imported)
- Election engine fixtures in each phase
- FastAPI test client bound to a fresh engine
- Authentication helpers
"""

import os

# Settings are read at import time
os.environ.setdefault("ADMIN_IDENTITY", "admin")
os.environ.setdefault("SECRET_KEY", "test_secret_key_for_testing_only")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

from ballot.core.security import create_access_token
from ballot.main import create_app
from ballot.services.engine import ElectionEngine
from ballot.services.events import InMemoryEventLog
from ballot.services.models import DelegationMode

ADMIN = "admin"
VOTERS = ["alice", "bob", "carol", "dave"]


@pytest.fixture(scope="function")
def event_log() -> InMemoryEventLog:
    return InMemoryEventLog()


@pytest.fixture(scope="function")
def engine(event_log):
    """Engine in setup phase, no registrations."""
    engine = ElectionEngine(ADMIN, sinks=[event_log])
    yield engine
    engine.close()


@pytest.fixture(scope="function")
def voting_engine(engine) -> ElectionEngine:
    """Literal-mode engine in voting phase with two candidates and four voters."""
    engine.add_candidate(ADMIN, "Alice", "Parks for everyone")
    engine.add_candidate(ADMIN, "Bob", "Lower taxes")
    for voter in VOTERS:
        engine.add_voter(ADMIN, voter)
    engine.start_election(ADMIN)
    return engine


@pytest.fixture(scope="function")
def chain_engine(event_log):
    """Chain-mode engine in voting phase with two candidates and four voters."""
    engine = ElectionEngine(ADMIN, sinks=[event_log], delegation_mode=DelegationMode.CHAIN)
    engine.add_candidate(ADMIN, "Alice", "Parks for everyone")
    engine.add_candidate(ADMIN, "Bob", "Lower taxes")
    for voter in VOTERS:
        engine.add_voter(ADMIN, voter)
    engine.start_election(ADMIN)
    yield engine
    engine.close()


@pytest.fixture(scope="function")
def client():
    """FastAPI test client with a fresh literal-mode engine."""
    app = create_app(ElectionEngine(ADMIN))
    return TestClient(app)


@pytest.fixture(scope="function")
def chain_client():
    """FastAPI test client with a fresh chain-mode engine."""
    app = create_app(ElectionEngine(ADMIN, delegation_mode=DelegationMode.CHAIN))
    return TestClient(app)


def auth_headers(identity: str) -> dict[str, str]:
    """Authorization header carrying ``identity`` as the token subject."""
    return {"Authorization": f"Bearer {create_access_token(identity)}"}


@pytest.fixture(scope="function")
def admin_headers() -> dict[str, str]:
    return auth_headers(ADMIN)


@pytest.fixture(scope="function")
def headers_for():
    """Factory for voter authorization headers."""
    return auth_headers
