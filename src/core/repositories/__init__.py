"""Repository layer for data access."""

from src.core.repositories.base import BaseRepository
from src.core.repositories.channel_credential_repository import ChannelCredentialRepository
from src.core.repositories.moderation_action_repository import ModerationActionRepository

__all__ = [
    "BaseRepository",
    "ChannelCredentialRepository",
    "ModerationActionRepository",
]
