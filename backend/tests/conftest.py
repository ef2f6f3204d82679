"""Shared test fixtures and configuration for backend tests."""
from typing import List

import pytest
from fastapi.testclient import TestClient

from duochat.config import (
    AppSettings,
    JWTSecrets,
    Secrets,
    StorageSettings,
    reset_config,
    set_config,
)

TEST_SECRET = "test-secret-key"


def make_settings(**overrides) -> AppSettings:
    """Settings for tests: in-memory storage and a fixed signing key."""
    values = {
        "storage": StorageSettings(db_path=":memory:"),
        "secrets": Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    }
    values.update(overrides)
    return AppSettings(**values)


# Settings must be in place before the app module reads them at import time
set_config(make_settings())

from duochat.auth.service import TokenService  # noqa: E402
from duochat.chat.manager import manager  # noqa: E402
from duochat.chat.session import Session  # noqa: E402
from duochat.main import app  # noqa: E402
from duochat.storage.service import ChatStore  # noqa: E402
from helpers import FakeConnection  # noqa: E402


@pytest.fixture(autouse=True)
def settings():
    """Fresh test settings for every test."""
    config = make_settings()
    set_config(config)
    yield config
    reset_config()


@pytest.fixture(autouse=True)
def store():
    """Use an in-memory ChatStore for each test."""
    ChatStore.reset_instance()
    chat_store = ChatStore.get_instance(db_path=":memory:")
    yield chat_store
    ChatStore.reset_instance()


@pytest.fixture(autouse=True)
def reset_manager():
    """Forget sessions, rooms and presence between tests."""
    manager.reset()
    yield
    manager.reset()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Used as a context manager so that every WebSocket in a test shares one
    event loop with the app.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def tokens(settings) -> TokenService:
    return TokenService.from_config()


@pytest.fixture
def alice(store):
    return store.create_participant("alice")


@pytest.fixture
def bob(store):
    return store.create_participant("bob")


@pytest.fixture
def carol(store):
    return store.create_participant("carol")


@pytest.fixture
def room(store, alice, bob):
    """The private room shared by alice and bob."""
    chat_room, _ = store.get_or_create_private_room(alice.id, bob.id)
    return chat_room


@pytest.fixture
def make_session():
    """Factory for started, READY sessions on fake connections (async tests only)."""
    created: List[Session] = []

    def factory(participant_id: int, **kwargs) -> Session:
        connection = kwargs.pop("connection", None) or FakeConnection()
        session = Session(connection, participant_id, **kwargs)
        session.start()
        session.mark_ready()
        created.append(session)
        return session

    return factory
