"""
tests/conftest.py -- Shared test fixtures for Auth Starter.

This module provides:
  - store:            a standalone UserStore on its own in-memory DB
  - security_logger:  a fresh SecurityLogger (no alert hook side effects)
  - client:           TestClient over the full ASGI app (api + web), with a
                      patched lifespan wiring services onto an isolated DB.
                      follow_redirects=False so redirect Locations are visible.
  - create_user:      factory that inserts a user straight into client's store
  - login:            factory that logs in through the API (cookie is kept by
                      the client) and returns the access token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture gets a unique name, so tests never see each other's rows.

The required environment must be set before any api/ or core/ import:
api.main calls get_settings() at import time and exits on missing values.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before importing the app -- get_settings() runs at import.
os.environ.setdefault("DATABASE_URL", "sqlite:///file:authstarter_env?mode=memory&cache=shared&uri=true")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-that-is-long-enough-0123456789")
os.environ.setdefault("AUTH_SECRET", "test-auth-secret")
os.environ.setdefault("APP_URL", "http://testserver")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import build_services
from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from security.logger import SecurityLogger

# Per-IP limits would trip across tests that share the "testclient" address.
# test_rate_limit_* re-enables the limiter for its own duration.
limiter.enabled = False

TEST_ROUNDS = 4


def memory_db_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _patch_lifespan(db_url: str):
    """Return an async context manager that replaces the real lifespan.

    Builds the same services as production (build_services) but points the
    store at an isolated in-memory DB. The purge_task is a long-sleeping
    coroutine: a real asyncio.Task is needed for .cancel() at shutdown.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings().model_copy(update={"database_url": db_url})
        build_services(app, settings)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.user_store.close()

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> Generator[UserStore, None, None]:
    user_store = UserStore(memory_db_url("test_store"))
    yield user_store
    user_store.close()


@pytest.fixture()
def security_logger() -> SecurityLogger:
    return SecurityLogger(max_events=1000, alert_hook=None)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    """TestClient over the real app with a fresh DB and fresh services."""
    app.router.lifespan_context = _patch_lifespan(memory_db_url("test_app"))
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture()
def create_user(client: TestClient) -> Callable[..., User]:
    """Insert a user directly, bypassing the signup route."""

    def _create(email: str = "alice@acme.io", password: str = "correct-horse-1", role: str = "user") -> User:
        user_store: UserStore = client.app.state.user_store
        return user_store.create(email, hash_password(password, rounds=TEST_ROUNDS), role=role)

    return _create


@pytest.fixture()
def login(client: TestClient) -> Callable[[str, str], str]:
    """Log in through the API and return the access token.

    The session cookie from the response stays in client's cookie jar, so
    later requests on the same client are authenticated.
    """

    def _login(email: str, password: str) -> str:
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    return _login
