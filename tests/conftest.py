"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - hasher / store / tokens / toggle: isolated component fixtures for unit tests
  - _make_test_store(): isolated named shared-memory SQLite store for the API
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api: TestClient plus admin and user tokens for route integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables are set before any project import so get_settings()
sees test values (cheap bcrypt, generous login rate limit, a fixed key).
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace

# CRITICAL: set before any auth/core/api import -- get_settings() is cached.
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef-0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.access import AccessController
from auth.enforcement import EnforcementToggle
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import TokenService

TEST_SECRET = "unit-test-secret-key-abcdefghijklmnopqrstuvwxyz"
TEST_ISSUER = "authgate-test"

# bcrypt's minimum cost keeps the suite fast; production uses Settings.bcrypt_rounds.
FAST_ROUNDS = 4


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=FAST_ROUNDS)


@pytest.fixture
def store(hasher: PasswordHasher) -> Generator[UserStore, None, None]:
    """Initialized in-memory store. Contains the bootstrap admin (id=1)."""
    s = UserStore("sqlite:///:memory:")
    s.initialize(hasher)
    yield s
    s.shutdown()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(secret_key=TEST_SECRET, issuer=TEST_ISSUER, expire_seconds=3600)


@pytest.fixture
def toggle(tmp_path: Path) -> EnforcementToggle:
    return EnforcementToggle(tmp_path / "config" / "auth-config.json", cache_seconds=0)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str, hasher: PasswordHasher) -> UserStore:
    """Create an initialized store on a named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    store = UserStore(f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")
    store.initialize(hasher)
    return store


def _patch_lifespan(components: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so TestClient routes see
    isolated test stores and a temporary enforcement file.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.hasher = components.hasher
        app.state.user_store = components.user_store
        app.state.tokens = components.tokens
        app.state.enforcement = components.enforcement
        app.state.access = AccessController(components.tokens, components.enforcement)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(tmp_path_factory: pytest.TempPathFactory) -> Generator[SimpleNamespace, None, None]:
    """Yield a namespace with the TestClient and ready-made credentials.

    Attributes:
        client                      -- TestClient on the real app
        admin_token, admin_id       -- "testadmin" / "AdminPass1", role admin
        user_token, user_id         -- "testuser" / "UserPass1", role user
        store, tokens, enforcement  -- the components behind app.state
    """
    hasher = PasswordHasher(rounds=FAST_ROUNDS)
    module_name = tmp_path_factory.mktemp("api").name
    user_store = _make_test_store(module_name, hasher)
    components = SimpleNamespace(
        hasher=hasher,
        user_store=user_store,
        tokens=TokenService(secret_key=TEST_SECRET, issuer=TEST_ISSUER, expire_seconds=3600),
        enforcement=EnforcementToggle(tmp_path_factory.mktemp("config") / "auth-config.json", cache_seconds=0),
    )

    admin_id = user_store.create_account("testadmin", hasher.hash("AdminPass1"), Role.admin)
    user_id = user_store.create_account("testuser", hasher.hash("UserPass1"), Role.user)

    app.router.lifespan_context = _patch_lifespan(components)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield SimpleNamespace(
            client=client,
            admin_id=admin_id,
            admin_token=components.tokens.issue(admin_id, "testadmin", Role.admin),
            user_id=user_id,
            user_token=components.tokens.issue(user_id, "testuser", Role.user),
            store=user_store,
            tokens=components.tokens,
            enforcement=components.enforcement,
            hasher=hasher,
        )

    user_store.shutdown()
