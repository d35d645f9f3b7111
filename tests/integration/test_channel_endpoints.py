from datetime import timedelta

import pytest
from sqlalchemy import update

from src.core.models.channel_credential import ChannelCredential
from src.core.repositories.channel_credential_repository import ChannelCredentialRepository
from src.core.services.credential_store import CredentialStore, OAuthTokens
from src.core.utils.time import now_utc


async def _connect(session_factory, cipher, channel: str, expires_in: int = 3600) -> None:
    async with session_factory() as session:
        store = CredentialStore(ChannelCredentialRepository(session), cipher)
        await store.upsert(
            channel,
            OAuthTokens(
                access_token=f"{channel}-access",
                refresh_token=f"{channel}-refresh",
                expires_in=expires_in,
                scope=["chat:read"],
            ),
            {"id": "1", "login": channel, "display_name": channel.title()},
        )
        await session.commit()


async def _expire(session_factory, channel: str) -> None:
    async with session_factory() as session:
        await session.execute(
            update(ChannelCredential)
            .where(ChannelCredential.channel_identity == channel)
            .values(expires_at=now_utc() - timedelta(minutes=1))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_admin_lists_channels_without_secrets(client, admin_headers, session_factory, cipher):
    await _connect(session_factory, cipher, "alice")
    await _connect(session_factory, cipher, "bob")

    response = await client.get("/api/v1/channels", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert {item["channel"] for item in body["items"]} == {"alice", "bob"}
    item = body["items"][0]
    assert item["status"] == "connected"
    assert item["token_state"] == "valid"
    assert item["refresh_at"] < item["expires_at"]
    assert "access" not in response.text
    assert "refresh-" not in response.text


@pytest.mark.asyncio
async def test_streamer_cannot_list_channels(client, streamer_headers):
    response = await client.get("/api/v1/channels", headers=streamer_headers("alice"))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_listing_requires_session(client):
    response = await client.get("/api/v1/channels")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_streamer_sees_only_own_channel(client, streamer_headers, session_factory, cipher):
    await _connect(session_factory, cipher, "alice")
    await _connect(session_factory, cipher, "bob")

    own = await client.get("/api/v1/channels/alice", headers=streamer_headers("alice"))
    assert own.status_code == 200
    assert own.json()["display_name"] == "Alice"

    other = await client.get("/api/v1/channels/bob", headers=streamer_headers("alice"))
    assert other.status_code == 403
    missing = await client.get("/api/v1/channels/nobody", headers=streamer_headers("alice"))
    assert missing.status_code == 403
    assert missing.json() == other.json()


@pytest.mark.asyncio
async def test_admin_gets_404_for_unknown_channel(client, admin_headers):
    response = await client.get("/api/v1/channels/nobody", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invalid_channel_identity_is_unprocessable(client, admin_headers):
    response = await client.get("/api/v1/channels/bad-name!", headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["type"] == "validation_error"


@pytest.mark.asyncio
async def test_connection_check_uses_stored_token(client, streamer_headers, session_factory, cipher, app_twitch):
    await _connect(session_factory, cipher, "alice")

    response = await client.get(
        "/api/v1/channels/alice/connection", headers=streamer_headers("alice")
    )

    assert response.status_code == 200
    assert response.json()["ready"] is True
    assert response.json()["token_state"] == "valid"
    assert app_twitch.refresh_calls == []


@pytest.mark.asyncio
async def test_connection_check_refreshes_expired_token(
    client, streamer_headers, session_factory, cipher, app_twitch
):
    await _connect(session_factory, cipher, "alice")
    await _expire(session_factory, "alice")

    response = await client.get(
        "/api/v1/channels/alice/connection", headers=streamer_headers("alice")
    )

    body = response.json()
    assert body["ready"] is True
    assert body["token_state"] == "valid"
    assert app_twitch.refresh_calls == ["alice-refresh"]


@pytest.mark.asyncio
async def test_connection_check_reports_reconnect_needed(
    client, streamer_headers, session_factory, cipher, app_twitch
):
    from src.core.exceptions import ProviderError

    await _connect(session_factory, cipher, "alice")
    await _expire(session_factory, "alice")
    app_twitch.refresh_error = ProviderError("revoked", status_code=400, revoked=True)

    response = await client.get(
        "/api/v1/channels/alice/connection", headers=streamer_headers("alice")
    )

    body = response.json()
    assert body["ready"] is False
    assert body["needs_reconnect"] is True
    assert body["token_state"] == "refresh_failed"

    listing = await client.get("/api/v1/channels/alice", headers=streamer_headers("alice"))
    assert listing.json()["status"] == "revoked"


@pytest.mark.asyncio
async def test_connection_check_after_failed_forced_refresh(
    client, admin_headers, streamer_headers, session_factory, cipher, app_twitch
):
    from src.core.exceptions import ProviderError

    await _connect(session_factory, cipher, "alice")
    app_twitch.refresh_error = ProviderError("revoked", status_code=400, revoked=True)

    forced = await client.post("/api/v1/channels/alice/refresh", headers=admin_headers)
    assert forced.json()["refreshed"] is False

    response = await client.get(
        "/api/v1/channels/alice/connection", headers=streamer_headers("alice")
    )

    body = response.json()
    assert body["token_state"] == "refresh_failed"
    assert body["ready"] is False
    assert body["needs_reconnect"] is True
    assert app_twitch.refresh_calls == ["alice-refresh"]


@pytest.mark.asyncio
async def test_forced_refresh(client, admin_headers, session_factory, cipher, app_twitch):
    await _connect(session_factory, cipher, "alice")

    response = await client.post("/api/v1/channels/alice/refresh", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"channel": "alice", "refreshed": True, "token_state": "valid"}
    assert app_twitch.refresh_calls == ["alice-refresh"]

    missing = await client.post("/api/v1/channels/nobody/refresh", headers=admin_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_disconnect(client, streamer_headers, session_factory, cipher):
    await _connect(session_factory, cipher, "alice")
    headers = streamer_headers("alice")

    response = await client.delete("/api/v1/channels/alice", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"channel": "alice", "disconnected": True}

    again = await client.delete("/api/v1/channels/alice", headers=headers)
    assert again.status_code == 404
    assert (await client.get("/api/v1/channels/alice", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_listing_reports_lapsed_token_as_expired(client, admin_headers, session_factory, cipher):
    await _connect(session_factory, cipher, "alice")
    await _expire(session_factory, "alice")

    response = await client.get("/api/v1/channels/alice", headers=admin_headers)

    body = response.json()
    assert body["status"] == "expired"
    assert body["token_state"] == "expired"
