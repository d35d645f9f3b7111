"""Connected channel management endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from src.api_v1.schemas import (
    ChannelListResponse,
    ChannelSummary,
    ConnectionCheckResponse,
    DisconnectResponse,
    RefreshResponse,
)
from src.core.dependencies import (
    get_authorized_channel,
    get_credential_store,
    get_current_admin,
    get_token_manager,
)
from src.core.models.channel_credential import ChannelCredential, CredentialStatus
from src.core.services.credential_store import CredentialStore, channel_data_view
from src.core.services.security import AdminIdentity
from src.core.services.token_manager import (
    TokenManager,
    TokenState,
    refresh_threshold,
    token_state,
)
from src.core.utils.time import now_utc, to_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels", tags=["channels"])


def _summary(record: ChannelCredential) -> ChannelSummary:
    data = channel_data_view(record)
    now = now_utc()
    status = data["status"]
    # A connected record whose access token lapsed reports as expired until refreshed
    if status == CredentialStatus.CONNECTED.value and now >= to_utc(record.expires_at):
        status = CredentialStatus.EXPIRED.value
    return ChannelSummary(
        channel=record.channel_identity,
        id=data.get("id"),
        login=data.get("login"),
        display_name=data.get("display_name"),
        profile_image_url=data.get("profile_image_url"),
        broadcaster_type=data.get("broadcaster_type"),
        connected_at=to_utc(data["connected_at"]),
        expires_at=to_utc(record.expires_at),
        refresh_at=refresh_threshold(record),
        status=status,
        token_state=token_state(record, now).value,
        scope=list(record.scope or []),
    )


@router.get("", response_model=ChannelListResponse)
async def list_channels(
    store: Annotated[CredentialStore, Depends(get_credential_store)],
    _admin: Annotated[AdminIdentity, Depends(get_current_admin)],
) -> ChannelListResponse:
    """List every connected channel, newest first, without token material."""
    records = await store.list_all()
    items = [_summary(record) for record in records]
    return ChannelListResponse(items=items, total=len(items))


@router.get("/{channel}", response_model=ChannelSummary)
async def get_channel(
    channel: Annotated[str, Depends(get_authorized_channel)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> ChannelSummary:
    record = await store.repo.get_by_channel(channel)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not connected")
    return _summary(record)


@router.get("/{channel}/connection", response_model=ConnectionCheckResponse)
async def check_connection(
    channel: Annotated[str, Depends(get_authorized_channel)],
    token_manager: Annotated[TokenManager, Depends(get_token_manager)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> ConnectionCheckResponse:
    """Make sure a live access token exists, refreshing it if it is about to lapse."""
    access_token = await token_manager.get_access_token(channel)
    state = await token_manager.get_state(channel)
    record = await store.repo.get_by_channel(channel)
    # A failed refresh leaves a usable-looking token behind; it still needs a reconnect
    ready = access_token is not None and state is not TokenState.REFRESH_FAILED
    return ConnectionCheckResponse(
        channel=channel,
        ready=ready,
        needs_reconnect=not ready,
        token_state=state.value,
        expires_at=to_utc(record.expires_at) if record else None,
    )


@router.post("/{channel}/refresh", response_model=RefreshResponse)
async def refresh_channel(
    channel: Annotated[str, Depends(get_authorized_channel)],
    token_manager: Annotated[TokenManager, Depends(get_token_manager)],
) -> RefreshResponse:
    refreshed = await token_manager.refresh(channel)
    state = await token_manager.get_state(channel)
    if state is TokenState.ABSENT:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not connected")
    return RefreshResponse(channel=channel, refreshed=refreshed, token_state=state.value)


@router.delete("/{channel}", response_model=DisconnectResponse)
async def disconnect_channel(
    channel: Annotated[str, Depends(get_authorized_channel)],
    token_manager: Annotated[TokenManager, Depends(get_token_manager)],
) -> DisconnectResponse:
    removed = await token_manager.disconnect(channel)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not connected")
    return DisconnectResponse(channel=channel, disconnected=True)
