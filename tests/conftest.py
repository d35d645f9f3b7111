"""
Pytest configuration and helpers for the Stream Control test-suite.

The application reads its settings from the environment, so the bootstrap
below points it at a throwaway SQLite file and fixed key material before
anything under ``src`` is imported. Twitch is never contacted: tests inject
``FakeTwitch`` wherever a provider is needed.
"""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Generator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pwdlib import PasswordHash
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

# ---------------------------------------------------------------------------
# Environment bootstrap
# ---------------------------------------------------------------------------

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_DB_PATH = Path(tempfile.mkdtemp(prefix="stream-control-")) / "test.db"
TEST_DB_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "correct horse battery staple"

os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-session-signing-secret-0123456789abcdef"
os.environ["TOKEN_ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["TWITCH_CLIENT_ID"] = "test-client-id"
os.environ["TWITCH_CLIENT_SECRET"] = "test-client-secret"
os.environ["TWITCH_REDIRECT_URI"] = "http://testserver/api/v1/auth/twitch/callback"
os.environ["ADMIN_USERNAME"] = ADMIN_USERNAME
os.environ["ADMIN_PASSWORD_HASH"] = PasswordHash.recommended().hash(ADMIN_PASSWORD)
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["CORS_ORIGINS"] = "https://dash.example"
os.environ["HOST"] = "0.0.0.0"
os.environ["PORT"] = "8100"
os.environ["LOG_LEVEL"] = "DEBUG"

from src.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from src.core.exceptions import ProviderError  # noqa: E402
from src.core.models import ChannelCredential, ModerationAction  # noqa: E402
from src.core.models.base import Base  # noqa: E402
from src.core.models.db_helper import db_helper  # noqa: E402
from src.core.services.cipher import TokenCipher  # noqa: E402
from src.core.services.credential_store import OAuthTokens  # noqa: E402
from src.core.services.security import (  # noqa: E402
    AdminIdentity,
    SessionAuthenticator,
    StreamerIdentity,
)
from src.core.services.token_manager import TokenManager  # noqa: E402
from src.main import app  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Settable clock handed to services instead of ``now_utc``."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeTwitch:
    """In-memory OAuth provider that records every call."""

    def __init__(self, login: str = "alice"):
        self.login = login
        self.exchange_calls: list[str] = []
        self.refresh_calls: list[str] = []
        self.refresh_error: ProviderError | None = None
        self.refresh_delay: float = 0.0
        self.refresh_payload: dict[str, Any] | None = None
        self.issued = 0

    def _tokens(self, **overrides: Any) -> OAuthTokens:
        self.issued += 1
        payload = {
            "access_token": f"access-{self.issued}",
            "refresh_token": f"refresh-{self.issued}",
            "expires_in": 3600,
            "scope": ["chat:read", "moderator:manage:banned_users"],
        }
        payload.update(overrides)
        return OAuthTokens.from_payload(payload)

    async def exchange_code(self, code: str) -> OAuthTokens:
        self.exchange_calls.append(code)
        return self._tokens()

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        if self.refresh_payload is not None:
            return OAuthTokens.from_payload(self.refresh_payload)
        return self._tokens()

    async def fetch_user(self, access_token: str) -> dict[str, Any]:
        return {
            "id": "1001",
            "login": self.login,
            "display_name": self.login.title(),
            "profile_image_url": f"https://static.example/{self.login}.png",
            "broadcaster_type": "affiliate",
        }


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="session")
async def prepare_database() -> AsyncGenerator[None, None]:
    """Create the SQLite schema once for the whole run."""
    async with db_helper.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield

    await db_helper.dispose()


@pytest_asyncio.fixture
async def clean_tables(prepare_database: None) -> AsyncGenerator[None, None]:
    yield
    async with db_helper.session_factory() as session:
        await session.execute(delete(ModerationAction))
        await session.execute(delete(ChannelCredential))
        await session.commit()


@pytest_asyncio.fixture
async def db_session(clean_tables: None) -> AsyncGenerator[AsyncSession, None]:
    async with db_helper.session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture
def session_factory(clean_tables):
    return db_helper.session_factory


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher.from_hex(TEST_ENCRYPTION_KEY)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_twitch() -> FakeTwitch:
    return FakeTwitch()


@pytest.fixture
def token_manager(session_factory, cipher, fake_twitch, clock) -> TokenManager:
    return TokenManager(session_factory, cipher, fake_twitch, clock=clock)


@pytest.fixture
def authenticator() -> SessionAuthenticator:
    return app.state.session_authenticator


# ---------------------------------------------------------------------------
# Application overrides
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def override_app_state(cipher) -> Generator[FakeTwitch, None, None]:
    """Point the app's token manager at a fake Twitch provider."""
    original_manager = app.state.token_manager

    fake = FakeTwitch()
    app.state.token_manager = TokenManager(db_helper.session_factory, cipher, fake)
    try:
        yield fake
    finally:
        app.state.token_manager = original_manager
        app.dependency_overrides.clear()


@pytest.fixture
def app_twitch(override_app_state) -> FakeTwitch:
    """The fake provider behind the app's token manager."""
    return override_app_state


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(clean_tables: None) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX client configured for the ASGI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
def admin_credentials() -> dict[str, str]:
    return {"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD}


@pytest.fixture
def admin_headers(authenticator) -> dict[str, str]:
    return {"Authorization": f"Bearer {authenticator.issue(AdminIdentity())}"}


@pytest.fixture
def streamer_headers(authenticator):
    def _headers(channel: str) -> dict[str, str]:
        token = authenticator.issue(StreamerIdentity(channel_identity=channel))
        return {"Authorization": f"Bearer {token}"}

    return _headers
