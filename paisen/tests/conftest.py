"""
Pytest configuration for paisen. In-memory SQLite, a fixed MAL client id, and no retry backoff.
"""
import os

# Must be set before paisen.config is imported
os.environ["PAISEN_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["MAL_CLIENT_ID"] = "test-client"
os.environ.pop("MAL_CLIENT_SECRET", None)
os.environ["PAISEN_HTTP_BACKOFF_SECONDS"] = "0"
os.environ["PAISEN_PASSWORD_HASH_ROUNDS"] = "4"

import pytest

from paisen.database import SessionLocal, engine, init_db
from paisen.flow_store import clear_flows
from paisen.models import Base
from paisen.passwords import hash_password
from paisen.token_store import TokenStore


@pytest.fixture(autouse=True)
def fresh_db():
    """Empty tables and pending flows for every test."""
    init_db()
    yield
    clear_flows()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return TokenStore(db)


@pytest.fixture
def user(store):
    """Registered user with no MAL tokens."""
    return store.create("alice", "Alice", hash_password("correct-horse"))


class MockResponse:
    """Minimal stand-in for httpx.Response."""

    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = {"content-type": "application/json"} if json_data is not None else {}

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json


def _token_response(access_token="at", refresh_token="rt", expires_in=3600):
    return MockResponse(
        200,
        {
            "token_type": "Bearer",
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": expires_in,
        },
    )


@pytest.fixture
def make_response():
    return MockResponse


@pytest.fixture
def token_response():
    """Factory for a successful MAL token endpoint response."""
    return _token_response
