"""Pydantic schemas for Stream Control."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.models.moderation_action import (
    MAX_REASON_LENGTH,
    MAX_TIMEOUT_SECONDS,
    ModerationActionType,
)

# =============================================================================
# Authentication
# =============================================================================


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Literal["admin", "streamer"]
    channel: Optional[str] = None
    expires_in: int = Field(..., description="Session lifetime in seconds")


class IdentityResponse(BaseModel):
    role: Literal["admin", "streamer"]
    channel: Optional[str] = None


class AuthorizeUrlResponse(BaseModel):
    auth_url: str


# =============================================================================
# Channels
# =============================================================================


class ChannelSummary(BaseModel):
    """Listing projection; never carries token material."""

    model_config = ConfigDict(from_attributes=True)

    channel: str
    id: Optional[str] = None
    login: Optional[str] = None
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    broadcaster_type: Optional[str] = None
    connected_at: datetime
    expires_at: datetime
    refresh_at: datetime
    status: str
    token_state: str
    scope: List[str] = Field(default_factory=list)


class ChannelListResponse(BaseModel):
    items: List[ChannelSummary]
    total: int


class ConnectResponse(BaseModel):
    status: Literal["connected"] = "connected"
    channel: str
    session: Token


class ConnectionCheckResponse(BaseModel):
    channel: str
    ready: bool
    needs_reconnect: bool
    token_state: str
    expires_at: Optional[datetime] = None


class RefreshResponse(BaseModel):
    channel: str
    refreshed: bool
    token_state: str


class DisconnectResponse(BaseModel):
    channel: str
    disconnected: bool


# =============================================================================
# Moderation ledger
# =============================================================================


class ModerationActionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    moderator_identity: str = Field(..., min_length=1, max_length=64)
    moderator_display_name: str = Field(..., min_length=1, max_length=255)
    action_type: ModerationActionType
    target_user: Optional[str] = Field(None, max_length=255)
    duration: Optional[int] = Field(
        None, description=f"Timeout length in seconds, 1..{MAX_TIMEOUT_SECONDS}"
    )
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 0 < v <= MAX_TIMEOUT_SECONDS:
            raise ValueError(f"Duration must be between 1 and {MAX_TIMEOUT_SECONDS} seconds")
        return v


class ModerationActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel_identity: str
    moderator_identity: str
    moderator_display_name: str
    action_type: str
    target_user: Optional[str] = None
    duration: Optional[int] = None
    reason: Optional[str] = None
    timestamp: datetime


class ModeratorStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    moderator_identity: str
    moderator_display_name: str
    total_actions: int
    bans: int
    timeouts: int
    last_action_at: datetime
