"""
tests/conftest.py -- Shared test fixtures for the membership site.

This module provides:
  - db / user_store / request_store: an isolated in-memory database per test
  - sessions / accounts / access_service: services wired on top of those stores
  - make_user(): insert a user with a real Argon2 digest
  - login(): log a TestClient in through POST /api/v1/auth/login
  - client: TestClient over the assembled app (API + web) with follow_redirects=False

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each test
gets its own name, so no state leaks between tests.

The DEBUG env var must be set before any core/auth import so get_settings()
accepts a missing TURNSTILE_SECRET_KEY (bot verification disabled) instead of
raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any core/auth import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ADMIN_BOOTSTRAP_SECRET", "bootstrap-secret")
# Cheap Argon2 parameters keep the suite fast; the algorithm is unchanged.
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_TIME_COST", "1")

import pytest
from fastapi.testclient import TestClient

from api.main import build_state
from asgi import app
from auth.accounts import AccountService
from auth.models import User
from auth.passwords import hash_password
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.database import Database
from membership.service import AccessRequestService
from membership.store import AccessRequestStore
from membership.verification import FormRelay, TurnstileVerifier


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[Database, None, None]:
    url = f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    database = Database(url)
    yield database
    database.close()


@pytest.fixture
def user_store(db: Database) -> UserStore:
    return UserStore(db)


@pytest.fixture
def request_store(db: Database) -> AccessRequestStore:
    return AccessRequestStore(db)


@pytest.fixture
def sessions(user_store: UserStore) -> SessionManager:
    return SessionManager(user_store, get_settings())


@pytest.fixture
def accounts(user_store: UserStore, sessions: SessionManager) -> AccountService:
    return AccountService(user_store, sessions, get_settings())


@pytest.fixture
def access_service(request_store: AccessRequestStore, user_store: UserStore) -> AccessRequestService:
    """Service with bot verification and the form relay both disabled."""
    settings = get_settings()
    return AccessRequestService(request_store, user_store, TurnstileVerifier(settings), FormRelay(settings))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_user(
    store: UserStore,
    username: str,
    password: str = "password123",
    is_admin: bool = False,
    email: str | None = None,
) -> User:
    """Insert a user and return the stored record."""
    user_id = store.create_user(
        User(
            username=username,
            email=email or f"{username}@example.com",
            password_hash=hash_password(password),
            is_admin=is_admin,
        )
    )
    return store.get_by_id(user_id)


def login(client: TestClient, username: str, password: str) -> None:
    """Log in through the JSON API so the client holds a server-issued session cookie."""
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text


# ---------------------------------------------------------------------------
# App client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(db: Database) -> Generator[TestClient, None, None]:
    """TestClient over the real app with a patched lifespan.

    Routes hit the real handlers but the stores point at this test's database.
    follow_redirects=False so tests can assert on redirect Location headers.
    """
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, db, TurnstileVerifier(settings), FormRelay(settings))
        yield

    original = app.router.lifespan_context
    app.router.lifespan_context = test_lifespan
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client
    app.router.lifespan_context = original


@pytest.fixture
def admin(client: TestClient) -> User:
    """An admin account in the client's database, logged in on the client."""
    user = make_user(client.app.state.user_store, "admin", "adminpass1", is_admin=True)
    login(client, "admin", "adminpass1")
    return user


@pytest.fixture
def member(client: TestClient) -> User:
    """A regular member in the client's database, logged in on the client."""
    user = make_user(client.app.state.user_store, "member", "memberpass1")
    login(client, "member", "memberpass1")
    return user
