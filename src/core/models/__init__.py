"""Database models for Stream Control."""

from src.core.models.base import Base
from src.core.models.channel_credential import ChannelCredential, CredentialStatus
from src.core.models.moderation_action import ModerationAction, ModerationActionType

__all__ = [
    "Base",
    "ChannelCredential",
    "CredentialStatus",
    "ModerationAction",
    "ModerationActionType",
]
