"""Shared test fixtures for the Thymer queue bridge."""
import pytest
from fastapi.testclient import TestClient

from config.settings import AuthConfig, Settings, StreamConfig
from database.store_memory import InMemoryItemStore

TOKEN = "test-secret-token"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        auth=AuthConfig(token=TOKEN),
        # Short sessions so stream tests finish quickly
        stream=StreamConfig(poll_interval=0.05, session_timeout=0.3),
    )


@pytest.fixture
def store() -> InMemoryItemStore:
    return InMemoryItemStore()


@pytest.fixture
def app(settings, store):
    from api.main import create_app
    return create_app(settings=settings, store=store)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def token() -> str:
    return TOKEN
