"""
tests/conftest.py -- Shared test fixtures for Tollgate.

This module provides:
  - FrozenClock: a controllable clock injected into every service
  - store / user / client: an in-memory CredentialStore seeded with the
    reference user ("user1@example.com", AR, subscriber1) and client
    ("client1", https://example.org/cb), both with the secret "secret"
  - authentication / issuer / processor / validator: services wired to the
    store, the test Settings and the frozen clock
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
TestClient fixture because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

Secrets are hashed with bcrypt cost 4 so verification stays fast; the cost
factor travels with the hash, so verify_secret() honours it.

Environment variables must be set before any api/ import, because the app
reads Settings at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# Set before the app is imported: generous rate limits and no purge task.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("TOKEN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("CODE_PURGE_INTERVAL_SECONDS", "0")

import bcrypt
import pytest
from fastapi.testclient import TestClient

from api.main import configure_services
from asgi import app
from auth.authentication import AuthenticationService
from auth.codes import AuthorizationCodeIssuer
from auth.grants import GrantProcessor
from auth.models import Client, UserAccount
from auth.store import CredentialStore
from auth.validator import TokenValidator
from core.config import Settings

SECRET = "secret"
SECRET_HASH = bcrypt.hashpw(SECRET.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")

USERNAME = "user1@example.com"
REDIRECT_URI = "https://example.org/cb"

CODE_TTL = 600
ACCESS_TTL = 86400
REFRESH_TTL = 2628288


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_settings() -> Settings:
    return Settings(
        authorization_code_expiration=CODE_TTL,
        access_token_expiration=ACCESS_TTL,
        refresh_token_expiration=REFRESH_TTL,
        token_length=64,
        code_purge_interval_seconds=0,
    )


def seed(store: CredentialStore) -> tuple[UserAccount, Client]:
    """Insert the reference user and client and return them as stored."""
    user_id = store.create_user_account(
        UserAccount(username=USERNAME, password_hash=SECRET_HASH, country="AR", subscriber_id="subscriber1")
    )
    store.create_client(
        Client(name="client name", client_id="client1", client_secret_hash=SECRET_HASH, redirect_uri=REDIRECT_URI)
    )
    return store.get_user_account_by_id(user_id), store.get_client_by_client_id("client1")


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def seeded(store: CredentialStore) -> tuple[UserAccount, Client]:
    return seed(store)


@pytest.fixture
def user(seeded: tuple[UserAccount, Client]) -> UserAccount:
    return seeded[0]


@pytest.fixture
def client(seeded: tuple[UserAccount, Client]) -> Client:
    return seeded[1]


@pytest.fixture
def authentication(store: CredentialStore) -> AuthenticationService:
    return AuthenticationService(store)


@pytest.fixture
def issuer(store: CredentialStore, settings: Settings, clock: FrozenClock) -> AuthorizationCodeIssuer:
    return AuthorizationCodeIssuer(store, settings, clock=clock)


@pytest.fixture
def processor(
    store: CredentialStore,
    authentication: AuthenticationService,
    settings: Settings,
    clock: FrozenClock,
) -> GrantProcessor:
    return GrantProcessor(store, authentication, settings, clock=clock)


@pytest.fixture
def validator(store: CredentialStore, clock: FrozenClock) -> TokenValidator:
    return TokenValidator(store, clock=clock)


# ---------------------------------------------------------------------------
# Integration fixture -- one TestClient per test module
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, clock: FrozenClock):
    """Return a lifespan that wires the test store and clock into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        configure_services(app, store, make_settings(), clock=clock)
        app.state.purge_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, CredentialStore, FrozenClock], None, None]:
    """Yield (client, store, clock) for HTTP integration tests.

    The store is seeded with the reference user and client before the
    TestClient starts. The clock starts at the real current time so
    timestamps look plausible, and only moves when a test advances it.
    """
    db_name = f"test_tollgate_{request.module.__name__.rsplit('.', 1)[-1]}"
    store = CredentialStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    seed(store)
    clock = FrozenClock(datetime.now(timezone.utc))

    app.router.lifespan_context = _patch_lifespan(store, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, clock

    store.close()
