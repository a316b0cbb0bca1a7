"""
tests/conftest.py -- Shared test fixtures for the Meetup backend.

This module provides:
  - make_engine(): isolated named shared-memory SQLite engine per call
  - FakeRedis: dict-backed stand-in for the redis client, with a kill switch
  - CapturingNotifier: records action tokens instead of logging them
  - stores / authorizer fixtures for unit tests of the store and authz layers
  - api / cached_api: module-scoped TestClient harnesses over the real app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

ENVIRONMENT=test must be set before any core import so get_settings()
auto-generates SECRET_KEY and disables the real redis cache.
"""

from __future__ import annotations

import itertools
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# Set before any project import so get_settings() builds a test configuration.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "true")

import pytest
import redis
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_state
from auth.models import User, UserProfile
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer, hash_password
from authz.core import Authorizer
from cache.store import CacheStore
from core.config import Settings
from core.database import create_db_engine
from orgs.models import OrganizationMember, Role
from orgs.store import OrganizationStore

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
DEFAULT_PASSWORD = "correct-horse-battery"

# bcrypt is deliberately slow; hash the shared password once per session.
DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)

_seq = itertools.count(1)


def unique(prefix: str) -> str:
    return f"{prefix}{next(_seq)}"


def make_engine(name: Optional[str] = None):
    name = name or f"test_{uuid.uuid4().hex}"
    return create_db_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "secret_key": TEST_SECRET,
        "database_url": f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true",
        "cache_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeRedis:
    """The subset of redis.Redis used by cache.store, backed by a dict.

    Set `down = True` to make every call raise redis.ConnectionError, which
    is how a real client reports an unreachable server.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False
        self.gets = 0

    def _check(self) -> None:
        if self.down:
            raise redis.ConnectionError("fake redis is down")

    def get(self, key):
        self._check()
        self.gets += 1
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def ping(self):
        self._check()
        return True

    def close(self):
        pass


class CapturingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, kind: str, email: str, token: str) -> None:
        self.sent.append((kind, email, token))

    def last_token(self, kind: str, email: str) -> str:
        for sent_kind, sent_email, token in reversed(self.sent):
            if sent_kind == kind and sent_email == email:
                return token
        raise AssertionError(f"no {kind} token sent to {email}")


# ---------------------------------------------------------------------------
# Seeding helpers (store level)
# ---------------------------------------------------------------------------


def seed_user(
    users: UserStore,
    role: str = "client",
    activated: bool = True,
    email: Optional[str] = None,
    username: Optional[str] = None,
) -> User:
    name = username or unique("user")
    user = User(email=email or f"{name}@example.com", password_hash=DEFAULT_HASH, role=role)
    users.create_user(user, UserProfile(username=name))
    if activated:
        users.activate(user)
    return user


def seed_role(orgs: OrganizationStore, org_id: int, permissions: list[str], name: Optional[str] = None) -> Role:
    role = Role(name=name or unique("role"), organization_id=org_id, permissions=list(permissions))
    orgs.create_role(role)
    return role


def seed_member(orgs: OrganizationStore, org_id: int, user: User, role: Role) -> OrganizationMember:
    member = OrganizationMember(organization_id=org_id, user_profile_id=user.profile.id, role_id=role.id)
    orgs.add_member(member)
    return member


# ---------------------------------------------------------------------------
# Store / authorizer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[UserStore, OrganizationStore], None, None]:
    engine = make_engine()
    users, orgs = UserStore(engine), OrganizationStore(engine)
    yield users, orgs
    users.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def session_tokens() -> SessionTokenIssuer:
    return SessionTokenIssuer(TEST_SECRET, issuer="meetup", audience="meetup", exp_hours=3)


@pytest.fixture
def authorizer(stores, fake_redis, session_tokens) -> Authorizer:
    users, orgs = stores
    return Authorizer(users, orgs, CacheStore(fake_redis), session_tokens, cache_enabled=True)


@pytest.fixture
def uncached_authorizer(stores, session_tokens) -> Authorizer:
    users, orgs = stores
    return Authorizer(users, orgs, None, session_tokens, cache_enabled=False)


# ---------------------------------------------------------------------------
# HTTP harness
# ---------------------------------------------------------------------------


class ApiHarness:
    """A TestClient plus shortcuts for seeding users and organizations."""

    def __init__(self, client: TestClient) -> None:
        self.client = client

    @property
    def state(self):
        return self.client.app.state

    def make_user(self, role: str = "client", activated: bool = True, **kwargs) -> User:
        return seed_user(self.state.user_store, role=role, activated=activated, **kwargs)

    def headers(self, user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.state.session_tokens.issue(user.id)}"}

    def create_org(self, owner: User, name: Optional[str] = None) -> dict:
        resp = self.client.post(
            "/api/v1/organizations",
            json={"name": name or unique("org-")},
            headers=self.headers(owner),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def create_role(self, owner: User, org_id: int, permissions: list[str], name: Optional[str] = None) -> dict:
        resp = self.client.post(
            f"/api/v1/organizations/{org_id}/roles",
            json={"name": name or unique("role-"), "permissions": permissions},
            headers=self.headers(owner),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def add_member(self, org_id: int, user: User, role_id: int) -> OrganizationMember:
        member = OrganizationMember(organization_id=org_id, user_profile_id=user.profile.id, role_id=role_id)
        self.state.org_store.add_member(member)
        return member


def _patch_lifespan(settings: Settings, fake: Optional[FakeRedis]):
    """Return an async context manager that replaces the real lifespan.

    Builds the real collaborators from `settings` (fresh in-memory database),
    swaps in the fake redis when one is given and installs a capturing
    notifier so tests can read the action tokens that were issued.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, settings)
        if fake is not None:
            app.state.cache = CacheStore(fake)
            app.state.authorizer = Authorizer(
                app.state.user_store,
                app.state.org_store,
                app.state.cache,
                app.state.session_tokens,
                cache_enabled=True,
            )
        app.state.notifier = CapturingNotifier()
        yield
        app.state.user_store.close()

    return test_lifespan


def _harness(fake: Optional[FakeRedis]) -> Generator[ApiHarness, None, None]:
    app.router.lifespan_context = _patch_lifespan(make_settings(), fake)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client)


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Real app, fresh database, cache disabled."""
    yield from _harness(None)


@pytest.fixture(scope="module")
def cached_api() -> Generator[tuple[ApiHarness, FakeRedis], None, None]:
    """Real app, fresh database, look-aside cache on a FakeRedis."""
    fake = FakeRedis()
    for harness in _harness(fake):
        yield harness, fake


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield
