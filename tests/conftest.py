"""
tests/conftest.py -- Shared test fixtures for the school admin backend.

This module provides:
  - FakeClock: a settable clock injected into every time-dependent component
  - RecordingSender: an EmailSender that keeps messages instead of mailing
  - auth_env: isolated in-memory stores + services with roles seeded
  - client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture instance gets a fresh uuid in the name so tests never share rows.

The DEBUG env var must be set before any api/core import so get_settings()
(called at api.main import time) auto-generates SECRET_KEY in dev mode
rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, wire_auth
from auth.dependencies import SESSION_COOKIE
from auth.errors import EmailDeliveryError
from auth.models import Role, User
from auth.reset import PasswordResetService
from auth.seed import seed_roles, seed_roles_and_admin
from auth.service import AuthService
from auth.store import RoleStore, SessionStore, UserStore, open_engine
from auth.tokens import TokenIssuer, hash_password
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
ADMIN_EMAIL = "admin@school.test"
ADMIN_PASSWORD = "adminpass123"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock whose time only moves when a test says so.

    Starts at the real current time: the TestClient cookie jar drops cookies
    whose Expires is in the real past, so a fixed historical start would make
    every session cookie vanish on arrival.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


@dataclass
class RecordingSender:
    """EmailSender double. Set fail=True to simulate a transport outage."""

    sent: list[SentMail] = field(default_factory=list)
    fail: bool = False

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise EmailDeliveryError("Failed to send email.")
        self.sent.append(SentMail(to=to, subject=subject, body=body))

    def last_token(self) -> str:
        """Return the reset token from the most recent message body."""
        return self.sent[-1].body.rsplit(" ", 1)[-1]


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "admin_email": ADMIN_EMAIL,
        "admin_password": ADMIN_PASSWORD,
        "admin_name": "Test Admin",
    }
    values.update(overrides)
    return Settings(**values)


def make_db_url(prefix: str = "auth") -> str:
    return f"sqlite:///file:test_{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@dataclass
class AuthEnv:
    """Everything a unit test needs, built over one isolated database."""

    settings: Settings
    engine: Engine
    clock: FakeClock
    sender: RecordingSender
    users: UserStore
    roles: RoleStore
    sessions: SessionStore
    issuer: TokenIssuer
    auth_service: AuthService
    reset_service: PasswordResetService
    seeded_roles: dict[str, Role]

    def make_user(self, email: str, password: str = "pw123", role: str = "admin", **extra) -> int:
        return self.users.create_user(
            User(
                email=email,
                password_hash=hash_password(password),
                role_id=self.seeded_roles[role].id,
                **extra,
            )
        )


@pytest.fixture()
def auth_env() -> Generator[AuthEnv, None, None]:
    """Yield an AuthEnv with the three default roles seeded and no users."""
    settings = make_settings()
    engine = open_engine(make_db_url())
    clock = FakeClock()
    sender = RecordingSender()
    users, roles, sessions = UserStore(engine), RoleStore(engine), SessionStore(engine)
    issuer = TokenIssuer.from_settings(settings, clock=clock)

    yield AuthEnv(
        settings=settings,
        engine=engine,
        clock=clock,
        sender=sender,
        users=users,
        roles=roles,
        sessions=sessions,
        issuer=issuer,
        auth_service=AuthService.from_settings(settings, users, roles, sessions, issuer, clock=clock),
        reset_service=PasswordResetService.from_settings(settings, users, sender, clock=clock),
        seeded_roles=seed_roles(roles),
    )

    engine.dispose()


# ---------------------------------------------------------------------------
# Application client
# ---------------------------------------------------------------------------


def _patch_lifespan(env: AuthEnv):
    """Return an async context manager that replaces the real lifespan.

    Wires the fixture's engine, clock and sender into app.state through the
    same wire_auth() the production lifespan uses, then seeds the admin.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_auth(app, env.settings, env.engine, env.sender, clock=env.clock)
        seed_roles_and_admin(app.state.role_store, app.state.user_store, env.settings)
        yield

    return test_lifespan


@pytest.fixture()
def client(auth_env: AuthEnv) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by auth_env's database.

    The seeded admin is ADMIN_EMAIL / ADMIN_PASSWORD.
    """
    app.router.lifespan_context = _patch_lifespan(auth_env)

    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


def login(client: TestClient, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD):
    """POST /auth/login and return the response (cookie lands in the client jar)."""
    return client.post("/auth/login", json={"email": email, "password": password})


def use_session_cookie(client: TestClient, refresh_token: str) -> None:
    """Replace whatever session cookie the client holds with refresh_token."""
    client.cookies.clear()
    client.cookies.set(SESSION_COOKIE, refresh_token)
