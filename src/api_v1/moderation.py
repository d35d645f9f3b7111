"""Moderation ledger endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api_v1.schemas import (
    ModerationActionCreate,
    ModerationActionResponse,
    ModeratorStatsResponse,
)
from src.core.dependencies import get_authorized_channel, get_moderation_ledger, get_session
from src.core.services.moderation_ledger import ModerationEntry, ModerationLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels/{channel}", tags=["moderation"])


@router.post(
    "/moderation-actions",
    response_model=ModerationActionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_moderation_action(
    payload: ModerationActionCreate,
    channel: Annotated[str, Depends(get_authorized_channel)],
    ledger: Annotated[ModerationLedger, Depends(get_moderation_ledger)],
    session: Annotated[AsyncSession, Depends(get_session)],
):
    """Append an action to the channel's ledger."""
    action = await ledger.record(
        ModerationEntry(
            channel_identity=channel,
            moderator_identity=payload.moderator_identity,
            moderator_display_name=payload.moderator_display_name,
            action_type=payload.action_type,
            target_user=payload.target_user,
            duration=payload.duration,
            reason=payload.reason,
        )
    )
    await session.commit()
    return action


@router.get("/moderation-actions", response_model=list[ModerationActionResponse])
async def list_moderation_actions(
    channel: Annotated[str, Depends(get_authorized_channel)],
    ledger: Annotated[ModerationLedger, Depends(get_moderation_ledger)],
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await ledger.repo.get_by_channel(channel, limit=limit, offset=offset)


@router.get("/moderation-stats", response_model=list[ModeratorStatsResponse])
async def moderation_stats(
    channel: Annotated[str, Depends(get_authorized_channel)],
    ledger: Annotated[ModerationLedger, Depends(get_moderation_ledger)],
    days: int = Query(30, ge=0, le=365),
):
    """Ban and timeout counts per moderator over the last ``days`` days."""
    return await ledger.aggregate_stats(channel, days)
