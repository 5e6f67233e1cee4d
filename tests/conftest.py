"""
tests/conftest.py -- Shared test fixtures for Tokenguard unit and integration tests.

This module provides:
  - settings / auth_context: a fully wired AuthContext over a throwaway
    SQLite file, for store, service, and guard tests
  - register(): helper that creates a user (optionally with extra roles)
  - api_client: TestClient over the real FastAPI app with a patched lifespan,
    plus an admin and a regular user already registered

Design: each fixture gets its own SQLite *file* under tmp_path rather than a
shared-memory URI. The service runs store calls on worker threads and the
concurrency tests race two of them against each other; WAL mode on a real file
gives every connection the same database and real write locking.

Environment variables must be set before any api/ import: api/main.py reads
get_settings() at import time to configure logging and middleware.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Set before importing api.main so get_settings() sees a test environment.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-signing-secret-0123456789-abcdefghijklmnop")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.context import AuthContext, build_auth_context
from auth.models import PublicUser
from auth.permissions import ADMIN_ROLE_ID
from core.config import Settings
from core.tasks import TaskSupervisor

TEST_SECRET = "test-signing-secret-0123456789-abcdefghijklmnop"
PASSWORD = "Str0ngPassw0rd!"


def make_settings(db_path, **overrides) -> Settings:
    values = {
        "environment": "test",
        "database_url": f"sqlite:///{db_path}",
        "jwt_secret": TEST_SECRET,
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


def register(
    auth: AuthContext,
    username: str,
    email: str | None = None,
    password: str = PASSWORD,
    roles: tuple[str, ...] = (),
) -> PublicUser:
    """Register a user through the service and grant any extra roles."""

    async def _register() -> PublicUser:
        user = await auth.service.register(
            username=username,
            email=email or f"{username}@example.com",
            password=password,
        )
        for role_id in roles:
            await auth.service.assign_role(user.id, role_id)
        return user

    return asyncio.run(_register())


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path / "auth.db")


@pytest.fixture
def auth_context(settings) -> Generator[AuthContext, None, None]:
    auth = build_auth_context(settings)
    yield auth
    auth.close()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    auth: AuthContext
    admin: PublicUser
    user: PublicUser

    def login(self, identifier: str, password: str = PASSWORD) -> dict:
        resp = self.client.post("/api/v1/auth/login", json={"loginIdentifier": identifier, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    def bearer(self, identifier: str, password: str = PASSWORD) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.login(identifier, password)['accessToken']}"}


def _patch_lifespan(auth: AuthContext):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test AuthContext into app.state so routes see the
    throwaway database. No cleanup task is started; the supervisor is empty.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = auth
        app.state.tasks = TaskSupervisor()
        yield
        await app.state.tasks.cancel_all()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    Users created up front:
      - "admin" with the ADMIN role
      - "alice" with the default USER role
    Both use PASSWORD.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    auth = build_auth_context(make_settings(db_path))
    admin = register(auth, "admin", roles=(ADMIN_ROLE_ID,))
    user = register(auth, "alice")

    app.router.lifespan_context = _patch_lifespan(auth)

    # TrustedHostMiddleware only admits the configured hosts.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, auth=auth, admin=admin, user=user)

    auth.close()
