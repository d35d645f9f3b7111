import asyncio
import functools
from datetime import timedelta

import httpx
import pytest

from src.core.config import get_settings
from src.core.exceptions import ProviderError, ValidationError
from src.core.models.channel_credential import CredentialStatus
from src.core.repositories.channel_credential_repository import ChannelCredentialRepository
from src.core.services.credential_store import CredentialStore, OAuthTokens
from src.core.services.token_manager import REFRESH_WINDOW, TokenManager, TokenState, token_state
from src.core.services.twitch_oauth_service import TwitchOAuthService
from src.core.utils.time import to_utc


async def _seed(session_factory, cipher, clock, channel="alice", expires_in=3600, **channel_data):
    async with session_factory() as session:
        store = CredentialStore(ChannelCredentialRepository(session), cipher, clock=clock)
        await store.upsert(
            channel,
            OAuthTokens(
                access_token="seed-access",
                refresh_token="seed-refresh",
                expires_in=expires_in,
                scope=["chat:read"],
            ),
            {"login": channel, **channel_data},
        )
        await session.commit()


async def _load(session_factory, cipher, channel="alice"):
    async with session_factory() as session:
        store = CredentialStore(ChannelCredentialRepository(session), cipher)
        return await store.find(channel)


@pytest.mark.asyncio
async def test_returns_stored_token_without_calling_provider(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    clock.advance(minutes=10)

    assert await token_manager.get_access_token("alice") == "seed-access"
    assert fake_twitch.refresh_calls == []


@pytest.mark.asyncio
async def test_unknown_channel_returns_none(token_manager, fake_twitch):
    assert await token_manager.get_access_token("nobody") is None
    assert fake_twitch.refresh_calls == []


@pytest.mark.asyncio
async def test_refreshes_once_inside_window(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    clock.advance(seconds=3600 - REFRESH_WINDOW.total_seconds() + 1)

    assert await token_manager.get_access_token("alice") == "access-1"
    assert fake_twitch.refresh_calls == ["seed-refresh"]

    assert await token_manager.get_access_token("alice") == "access-1"
    assert len(fake_twitch.refresh_calls) == 1


@pytest.mark.asyncio
async def test_refreshes_expired_token(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    clock.advance(hours=5)

    assert await token_manager.get_access_token("alice") == "access-1"
    assert fake_twitch.refresh_calls == ["seed-refresh"]


@pytest.mark.asyncio
async def test_refresh_extends_expiry_from_refresh_time(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    clock.advance(seconds=3400)

    assert await token_manager.get_access_token("alice") == "access-1"
    assert len(fake_twitch.refresh_calls) == 1

    record = await _load(session_factory, cipher)
    assert to_utc(record.expires_at) == clock() + timedelta(seconds=3600)
    assert record.status == CredentialStatus.CONNECTED.value
    assert cipher.decrypt(record.encrypted_refresh_token) == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_keeps_metadata_and_previous_values(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock, display_name="Alice")
    fake_twitch.refresh_payload = {"access_token": "rotated", "expires_in": 600}
    clock.advance(hours=2)

    assert await token_manager.get_access_token("alice") == "rotated"

    record = await _load(session_factory, cipher)
    assert record.channel_data["display_name"] == "Alice"
    assert record.scope == ["chat:read"]
    assert cipher.decrypt(record.encrypted_refresh_token) == "seed-refresh"


@pytest.mark.parametrize(
    "error, expected_status",
    [
        (ProviderError("bad", status_code=400, revoked=True), CredentialStatus.REVOKED),
        (ProviderError("down", status_code=503), CredentialStatus.EXPIRED),
    ],
)
@pytest.mark.asyncio
async def test_failed_refresh_marks_record_and_returns_none(
    token_manager, fake_twitch, session_factory, cipher, clock, error, expected_status
):
    await _seed(session_factory, cipher, clock, display_name="Alice")
    fake_twitch.refresh_error = error
    clock.advance(hours=2)

    assert await token_manager.get_access_token("alice") is None

    record = await _load(session_factory, cipher)
    assert record.status == expected_status.value
    assert record.channel_data["display_name"] == "Alice"
    assert cipher.decrypt(record.encrypted_access_token) == "seed-access"
    assert await token_manager.get_state("alice") is TokenState.REFRESH_FAILED


@pytest.mark.asyncio
async def test_unusable_refresh_payload_marks_expired(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    fake_twitch.refresh_payload = {"access_token": "", "expires_in": 3600}
    clock.advance(hours=2)

    assert await token_manager.get_access_token("alice") is None
    record = await _load(session_factory, cipher)
    assert record.status == CredentialStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    fake_twitch.refresh_delay = 0.05
    clock.advance(hours=2)

    results = await asyncio.gather(
        *(token_manager.get_access_token("alice") for _ in range(5))
    )

    assert results == ["access-1"] * 5
    assert len(fake_twitch.refresh_calls) == 1


@pytest.mark.asyncio
async def test_malformed_provider_body_marks_expired(session_factory, cipher, clock):
    def gateway_page(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    oauth = TwitchOAuthService(
        get_settings().twitch,
        http_client=functools.partial(
            httpx.AsyncClient, transport=httpx.MockTransport(gateway_page)
        ),
    )
    manager = TokenManager(session_factory, cipher, oauth, clock=clock)
    await _seed(session_factory, cipher, clock)
    clock.advance(hours=2)

    assert await manager.get_access_token("alice") is None
    record = await _load(session_factory, cipher)
    assert record.status == CredentialStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_failed_refresh(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    fake_twitch.refresh_error = ProviderError("revoked", status_code=400, revoked=True)
    fake_twitch.refresh_delay = 0.02
    clock.advance(hours=2)

    results = await asyncio.gather(
        *(token_manager.get_access_token("alice") for _ in range(5))
    )

    assert results == [None] * 5
    assert fake_twitch.refresh_calls == ["seed-refresh"]
    record = await _load(session_factory, cipher)
    assert record.status == CredentialStatus.REVOKED.value


@pytest.mark.asyncio
async def test_revoked_channel_is_not_refreshed_again_implicitly(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    fake_twitch.refresh_error = ProviderError("revoked", status_code=400, revoked=True)
    clock.advance(hours=2)
    assert await token_manager.get_access_token("alice") is None

    fake_twitch.refresh_error = ProviderError("down", status_code=503)
    assert await token_manager.get_access_token("alice") is None

    assert fake_twitch.refresh_calls == ["seed-refresh"]
    record = await _load(session_factory, cipher)
    assert record.status == CredentialStatus.REVOKED.value


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_refresh(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)
    fake_twitch.refresh_delay = 0.05
    clock.advance(hours=2)

    caller = asyncio.ensure_future(token_manager.get_access_token("alice"))
    while not fake_twitch.refresh_calls:
        await asyncio.sleep(0.005)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    # The shielded refresh finishes on its own and persists the new pair
    while token_manager._pending:
        await asyncio.sleep(0.01)
    record = await _load(session_factory, cipher)
    assert cipher.decrypt(record.encrypted_access_token) == "access-1"
    assert len(fake_twitch.refresh_calls) == 1


@pytest.mark.asyncio
async def test_forced_refresh_ignores_expiry(
    token_manager, fake_twitch, session_factory, cipher, clock
):
    await _seed(session_factory, cipher, clock)

    assert await token_manager.refresh("alice") is True
    assert fake_twitch.refresh_calls == ["seed-refresh"]
    assert await token_manager.refresh("nobody") is False


@pytest.mark.asyncio
async def test_connect_stores_tokens_under_provider_login(token_manager, fake_twitch, cipher):
    fake_twitch.login = "Bob_Streams"

    record = await token_manager.connect("auth-code")

    assert fake_twitch.exchange_calls == ["auth-code"]
    assert record.channel_identity == "bob_streams"
    assert record.channel_data["display_name"] == "Bob_Streams"
    assert cipher.decrypt(record.encrypted_access_token) == "access-1"
    assert await token_manager.get_state("bob_streams") is TokenState.VALID


@pytest.mark.asyncio
async def test_connect_requires_refresh_token(token_manager, fake_twitch):
    async def _no_refresh(code):
        return OAuthTokens(access_token="a", refresh_token="", expires_in=60, scope=["x"])

    fake_twitch.exchange_code = _no_refresh
    with pytest.raises(ProviderError):
        await token_manager.connect("auth-code")


@pytest.mark.asyncio
async def test_connect_rejects_unusable_login(token_manager, fake_twitch):
    fake_twitch.login = "not a login"
    with pytest.raises(ValidationError):
        await token_manager.connect("auth-code")


@pytest.mark.asyncio
async def test_disconnect_removes_record(token_manager, session_factory, cipher, clock):
    await _seed(session_factory, cipher, clock)

    assert await token_manager.disconnect("alice") is True
    assert await token_manager.get_state("alice") is TokenState.ABSENT
    assert await token_manager.get_access_token("alice") is None
    assert await token_manager.disconnect("alice") is False


@pytest.mark.asyncio
async def test_state_transitions_follow_the_clock(token_manager, session_factory, cipher, clock):
    await _seed(session_factory, cipher, clock)

    assert await token_manager.get_state("alice") is TokenState.VALID
    clock.advance(seconds=3600 - 60)
    assert await token_manager.get_state("alice") is TokenState.NEAR_EXPIRY
    clock.advance(seconds=120)
    assert await token_manager.get_state("alice") is TokenState.EXPIRED


def test_token_state_absent():
    assert token_state(None, None) is TokenState.ABSENT
