"""
tests/conftest.py -- Shared test fixtures for SessionKeep.

This module provides:
  - settings: a Settings instance with fixed, distinct signing secrets
  - user_store / cache / families / replay / authenticator: the protocol
    object graph over in-memory SQLite (aiosqlite + StaticPool) and fakeredis
  - redis_server: the FakeServer behind `cache`; set .connected = False to
    simulate a Redis outage
  - _patch_lifespan(): wires in-memory stores into app.state, bypassing
    real startup (no database file, no Redis, no Google)
  - api_client: (TestClient, CapturingNotifier) for route integration tests
  - login: helper fixture that runs sign-up -> send-otp -> verify-otp

Design: plain ':memory:' SQLite gives every connection a blank schema, so
UserStore switches to StaticPool for in-memory URLs -- all checkouts share
one connection and one database.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate the token secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import fakeredis
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_services
from auth.accounts import OtpNotifier
from auth.authenticate import Authenticator
from auth.families import TokenFamilyRepository
from auth.oauth import GoogleProfile
from auth.replay import ReplayCache
from auth.store import UserStore
from cache.store import RedisCache
from core.config import Settings
from core.errors import OAuthFailed
from core.models import User

MEMORY_DB_URL = "sqlite+aiosqlite:///:memory:"
MOBILE_HEADERS = {"X-Mobile-Client": "ios"}

# ---------------------------------------------------------------------------
# Test doubles for external collaborators
# ---------------------------------------------------------------------------


class CapturingNotifier(OtpNotifier):
    """Keeps the last OTP sent to each email so tests can verify it."""

    def __init__(self) -> None:
        self.codes: dict[str, str] = {}

    async def send(self, user: User, code: str) -> None:
        self.codes[user.email] = code


class FakeGoogle:
    """Stands in for GoogleIdentityProvider. Accepts only the code "good-code"."""

    enabled = True

    def __init__(self) -> None:
        self.profile = GoogleProfile(
            id="google-123",
            email="ada@example.com",
            given_name="Ada",
            family_name="Lovelace",
        )

    def authorization_url(self) -> tuple[str, str]:
        return "https://accounts.google.com/o/oauth2/v2/auth?state=fixed-state", "fixed-state"

    async def exchange_code(self, code: str) -> GoogleProfile:
        if code != "good-code":
            raise OAuthFailed()
        return self.profile


# ---------------------------------------------------------------------------
# Protocol object graph (unit / component tests)
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        debug=True,
        access_token_secret="a" * 48,
        refresh_token_secret="r" * 48,
        access_token_expires_in="15m",
        refresh_token_expires_in="7d",
    )


@pytest_asyncio.fixture
async def user_store() -> UserStore:
    store = UserStore(MEMORY_DB_URL)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def cache(redis_server: fakeredis.FakeServer) -> RedisCache:
    redis_cache = RedisCache(client=fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True))
    await redis_cache.connect()
    yield redis_cache
    await redis_cache.close()


@pytest.fixture
def families(user_store: UserStore, cache: RedisCache, settings: Settings) -> TokenFamilyRepository:
    return TokenFamilyRepository(user_store, cache, ttl=settings.token_family_cache_ttl_seconds)


@pytest.fixture
def replay(cache: RedisCache, settings: Settings) -> ReplayCache:
    return ReplayCache(cache, ttl=settings.used_token_ttl_seconds)


@pytest.fixture
def authenticator(
    user_store: UserStore, families: TokenFamilyRepository, replay: ReplayCache, settings: Settings
) -> Authenticator:
    return Authenticator(user_store, families, replay, settings)


@pytest_asyncio.fixture
async def user(user_store: UserStore) -> User:
    return await user_store.create_user(
        User(email="grace@example.com", phone="+15550100", first_name="Grace", last_name="Hopper")
    )


# ---------------------------------------------------------------------------
# API integration
# ---------------------------------------------------------------------------


def _patch_lifespan(notifier: OtpNotifier, google: FakeGoogle):
    """Return an async context manager that replaces the real lifespan.

    Builds the same object graph as production (wire_services) over an
    in-memory database and fakeredis, then swaps in the OTP and Google
    test doubles.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        user_store = UserStore(MEMORY_DB_URL)
        await user_store.connect()
        cache = RedisCache(client=fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True))
        await cache.connect()
        wire_services(app, user_store, cache)
        app.state.accounts.notifier = notifier
        app.state.accounts.identity_provider = google
        yield
        await cache.close()
        await user_store.close()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, CapturingNotifier], None, None]:
    """Yield (client, notifier) backed by fresh in-memory stores.

    Function-scoped: every test starts with an empty user directory, an
    empty cache and fresh rate-limit counters.
    """
    notifier = CapturingNotifier()
    app.router.lifespan_context = _patch_lifespan(notifier, FakeGoogle())
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier


@pytest.fixture
def login(api_client):
    """Return a helper that signs a user up and completes OTP login as a mobile client.

    The helper returns the verify-otp JSON body, which carries data.id,
    newAccessToken and newRefreshToken.
    """
    client, notifier = api_client

    def _login(email: str = "alan@example.com", phone: str = "+15550199") -> dict:
        resp = client.post(
            "/api/v1/sign-up",
            json={"email": email, "phone": phone, "firstName": "Alan", "lastName": "Turing"},
        )
        assert resp.status_code == 201, resp.text
        resp = client.post("/api/v1/send-otp", json={"email": email})
        assert resp.status_code == 200, resp.text
        resp = client.post(
            "/api/v1/verify-otp",
            json={"email": email, "otp": notifier.codes[email]},
            headers=MOBILE_HEADERS,
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login
