"""
tests/conftest.py -- Shared test fixtures for the marketplace auth tests.

This module provides:
  - Clock: a settable clock injected into codec, registry and service
  - FakeNotifier: records outgoing emails, can be told to fail
  - fake_google_verify(): stands in for Google's certificate check
  - store / build_service: in-memory AccountStore and a wired AuthService
  - api: TestClient on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/auth/core import so
get_settings() (cached) and the module-level limiter see test values.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any auth/core import.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.google import GoogleIdentityVerifier
from auth.models import Account
from auth.revocation import InMemoryRevocationRegistry
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import ResetTokenGenerator, TokenCodec

ACCESS_SECRET = os.environ["JWT_SECRET"]
REFRESH_SECRET = os.environ["JWT_REFRESH_SECRET"]
GOOGLE_CLIENT_ID = os.environ["GOOGLE_CLIENT_ID"]
BCRYPT_ROUNDS = 4

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class Clock:
    """Settable UTC clock. Call it to read the time; advance() moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class FakeNotifier:
    welcomes: list[Account] = field(default_factory=list)
    resets: list[dict] = field(default_factory=list)
    fail_welcome: bool = False
    fail_reset: bool = False

    def send_welcome(self, account: Account) -> None:
        if self.fail_welcome:
            raise RuntimeError("smtp down")
        self.welcomes.append(account)

    def send_password_reset(self, email: str, token: str, name: str) -> None:
        if self.fail_reset:
            raise RuntimeError("smtp down")
        self.resets.append({"email": email, "token": token, "name": name})

    @property
    def last_reset_token(self) -> str:
        return self.resets[-1]["token"]


# id_token -> claims Google would return for it. Anything else is rejected.
GOOGLE_TOKENS: dict[str, dict] = {
    "google-ok": {
        "sub": "google-sub-1",
        "email": "gina@example.com",
        "email_verified": True,
        "name": "Gina Google",
        "picture": "https://example.com/gina.png",
    },
    "google-unverified": {
        "sub": "google-sub-2",
        "email": "mallory@example.com",
        "email_verified": False,
    },
}


def fake_google_verify(token: str, audience: str) -> dict:
    if audience != GOOGLE_CLIENT_ID or token not in GOOGLE_TOKENS:
        raise ValueError("Wrong number of segments in token")
    return dict(GOOGLE_TOKENS[token])


# ---------------------------------------------------------------------------
# Store and service helpers
# ---------------------------------------------------------------------------


def make_store() -> AccountStore:
    """Return an isolated named shared-memory AccountStore."""
    return AccountStore(db_url=f"sqlite:///file:test_accounts_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@dataclass
class Wiring:
    service: AuthService
    store: AccountStore
    codec: TokenCodec
    registry: InMemoryRevocationRegistry
    notifier: FakeNotifier
    clock: Clock


def build_service(
    store: AccountStore,
    clock: Clock,
    *,
    persist_refresh_tokens: bool = False,
    google_client_id: str = GOOGLE_CLIENT_ID,
    access_ttl: timedelta = timedelta(hours=1),
    refresh_ttl: timedelta = timedelta(days=7),
    refresh_secret: str = REFRESH_SECRET,
) -> Wiring:
    registry = InMemoryRevocationRegistry(clock=clock)
    codec = TokenCodec(
        access_secret=ACCESS_SECRET,
        refresh_secret=refresh_secret,
        access_ttl=access_ttl,
        refresh_ttl=refresh_ttl,
        registry=registry,
        clock=clock,
    )
    notifier = FakeNotifier()
    service = AuthService(
        store=store,
        codec=codec,
        reset_tokens=ResetTokenGenerator(timedelta(minutes=10), clock=clock),
        identity_verifier=GoogleIdentityVerifier(google_client_id, verify_fn=fake_google_verify),
        notifier=notifier,
        persist_refresh_tokens=persist_refresh_tokens,
        bcrypt_rounds=BCRYPT_ROUNDS,
        clock=clock,
    )
    return Wiring(service=service, store=store, codec=codec, registry=registry, notifier=notifier, clock=clock)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def wiring(store: AccountStore, clock: Clock) -> Wiring:
    return build_service(store, clock)


def _patch_lifespan(wired: Wiring):
    """Return an async context manager that replaces the real lifespan.

    Wires the test service into app.state so TestClient routes see the
    in-memory store, fake notifier and settable clock.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = wired.store
        app.state.revocations = wired.registry
        app.state.auth_service = wired.service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class Api:
    client: TestClient
    wiring: Wiring

    @property
    def notifier(self) -> FakeNotifier:
        return self.wiring.notifier

    @property
    def clock(self) -> Clock:
        return self.wiring.clock


def _client_for(wired: Wiring) -> Generator[Api, None, None]:
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(wired)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield Api(client=client, wiring=wired)
    finally:
        app.router.lifespan_context = original


@pytest.fixture
def api(store: AccountStore, clock: Clock) -> Generator[Api, None, None]:
    """TestClient on the real app; refresh-token persistence off."""
    yield from _client_for(build_service(store, clock))


@pytest.fixture
def persistent_api(store: AccountStore, clock: Clock) -> Generator[Api, None, None]:
    """TestClient on the real app; refresh-token persistence on (production mode)."""
    yield from _client_for(build_service(store, clock, persist_refresh_tokens=True))
