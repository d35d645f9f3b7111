"""Append-only audit trail of privileged moderation actions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models.base import Base

MAX_TIMEOUT_SECONDS = 1_209_600
MAX_REASON_LENGTH = 500


class ModerationActionType(str, Enum):
    BAN = "ban"
    UNBAN = "unban"
    TIMEOUT = "timeout"
    UNTIMEOUT = "untimeout"
    MOD = "mod"
    UNMOD = "unmod"
    VIP = "vip"
    UNVIP = "unvip"


class ModerationAction(Base):
    """One privileged action taken against a broadcaster's channel."""

    __tablename__ = "moderation_actions"
    __table_args__ = (
        CheckConstraint(
            f"action_type != 'timeout' OR (duration > 0 AND duration <= {MAX_TIMEOUT_SECONDS})",
            name="ck_moderation_actions_timeout_duration",
        ),
        Index("ix_moderation_actions_channel_moderator", "channel_identity", "moderator_identity"),
        Index(
            "ix_moderation_actions_channel_type_timestamp",
            "channel_identity",
            "action_type",
            "timestamp",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    channel_identity: Mapped[str] = mapped_column(
        String(25), nullable=False, index=True, comment="Broadcaster acted upon"
    )
    moderator_identity: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="Moderator user id"
    )
    moderator_display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    target_user: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Timeout length in seconds"
    )
    reason: Mapped[str | None] = mapped_column(String(MAX_REASON_LENGTH), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<ModerationAction(channel_identity={self.channel_identity}, "
            f"action_type={self.action_type}, moderator={self.moderator_identity})>"
        )
