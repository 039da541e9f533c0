"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file under tmp_path, wired into a fresh
application through create_app, so tests never share rows.
"""

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports so test env vars are used
from messages_api.config import Settings, get_settings
get_settings.cache_clear()

from messages_api.main import create_app  # noqa: E402
from messages_api.storage import Store  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test database file."""
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'messages.db'}",
        LOG_LEVEL="WARNING",
        EXPOSE_STORE_ERRORS=True,
        REPORT_MISSING_ROWS=False,
    )


@pytest.fixture
def store(settings):
    """Store for the per-test database; schema not created yet."""
    test_store = Store(settings.DATABASE_URL)
    yield test_store
    test_store.dispose()


@pytest.fixture
def db(store):
    """Session on an initialized store, for tests that skip HTTP."""
    store.init_schema()
    session = store.session()
    yield session
    session.close()


@pytest.fixture
def make_client(settings, store):
    """Factory for a test client whose settings can be overridden per test."""
    clients = []

    def _make_client(**overrides) -> TestClient:
        app = create_app(settings=settings.model_copy(update=overrides), store=store)
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield _make_client

    for test_client in clients:
        test_client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    """Test client with the default settings and an empty store."""
    return make_client()
