"""Encrypted OAuth credentials, one row per connected channel."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models.base import Base

CHANNEL_IDENTITY_MAX_LENGTH = 25


class CredentialStatus(str, Enum):
    CONNECTED = "connected"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ChannelCredential(Base):
    """Encrypted OAuth tokens plus the profile snapshot taken at connect time.

    Ciphertext columns are deferred with raiseload so they never leak into a
    default projection; load them explicitly with ``undefer``.
    """

    __tablename__ = "channel_credentials"
    __table_args__ = (
        UniqueConstraint("channel_identity", name="uq_channel_credentials_channel_identity"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    channel_identity: Mapped[str] = mapped_column(
        String(CHANNEL_IDENTITY_MAX_LENGTH),
        nullable=False,
        index=True,
        comment="Channel login the tokens belong to",
    )
    encrypted_access_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        deferred=True,
        deferred_raiseload=True,
        comment="Encrypted access token",
    )
    encrypted_refresh_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        deferred=True,
        deferred_raiseload=True,
        comment="Encrypted refresh token",
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="Access token expiry time"
    )
    scope: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list, comment="Granted scopes"
    )
    token_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="bearer", server_default="bearer"
    )
    channel_data: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Provider profile snapshot"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CredentialStatus.CONNECTED.value,
        server_default=CredentialStatus.CONNECTED.value,
        index=True,
    )
    connected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ChannelCredential(channel_identity={self.channel_identity}, "
            f"status={self.status})>"
        )
