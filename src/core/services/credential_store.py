"""Service for encrypting and persisting per-channel OAuth tokens."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from src.core.exceptions import ValidationError
from src.core.models.channel_credential import (
    CHANNEL_IDENTITY_MAX_LENGTH,
    ChannelCredential,
    CredentialStatus,
)
from src.core.repositories.channel_credential_repository import ChannelCredentialRepository
from src.core.services.cipher import TokenCipher
from src.core.utils.time import now_utc

logger = logging.getLogger(__name__)

CHANNEL_IDENTITY_PATTERN = re.compile(rf"^[A-Za-z0-9_]{{1,{CHANNEL_IDENTITY_MAX_LENGTH}}}$")
TOKEN_TYPE = "bearer"


def normalize_channel_identity(channel_identity: Optional[str]) -> str:
    """Validate a channel login and return its canonical lower-case form."""
    if not channel_identity or not CHANNEL_IDENTITY_PATTERN.match(channel_identity):
        raise ValidationError("Channel identity must be 1-25 letters, digits or underscores")
    return channel_identity.lower()


@dataclass
class OAuthTokens:
    """Token pair as returned by the provider's token endpoint."""

    access_token: str
    refresh_token: str
    expires_in: int
    scope: list[str] = field(default_factory=list)
    token_type: str = TOKEN_TYPE

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OAuthTokens":
        scope = payload.get("scope") or []
        if isinstance(scope, str):
            scope = scope.split()
        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return cls(
            access_token=payload.get("access_token") or "",
            refresh_token=payload.get("refresh_token") or "",
            expires_in=expires_in,
            scope=list(scope),
            token_type=(payload.get("token_type") or TOKEN_TYPE).lower(),
        )


class CredentialStore:
    """Encrypt token material and persist it via the repository.

    The store never decides whether a token needs decrypting; callers use
    ``decrypt_access_token`` / ``decrypt_refresh_token`` explicitly.
    """

    def __init__(
        self,
        repo: ChannelCredentialRepository,
        cipher: TokenCipher,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.repo = repo
        self.cipher = cipher
        self._clock = clock

    @staticmethod
    def _validate_tokens(tokens: OAuthTokens) -> None:
        if not tokens.access_token:
            raise ValidationError("Access token is required")
        if not tokens.refresh_token:
            raise ValidationError("Refresh token is required")
        if tokens.expires_in <= 0:
            raise ValidationError("Token expiry must be a positive number of seconds")
        if not tokens.scope:
            raise ValidationError("At least one granted scope is required")

    async def upsert(
        self,
        channel_identity: str,
        tokens: OAuthTokens,
        channel_data: dict[str, Any],
    ) -> ChannelCredential:
        channel = normalize_channel_identity(channel_identity)
        self._validate_tokens(tokens)

        now = self._clock()
        # Drop fields the store owns so a stale snapshot cannot override them
        snapshot = {
            key: value
            for key, value in (channel_data or {}).items()
            if key not in {"connected_at", "connectedAt", "status"}
        }

        record = await self.repo.upsert(
            channel_identity=channel,
            encrypted_access_token=self.cipher.encrypt(tokens.access_token),
            encrypted_refresh_token=self.cipher.encrypt(tokens.refresh_token),
            expires_at=now + timedelta(seconds=tokens.expires_in),
            scope=list(dict.fromkeys(tokens.scope)),
            token_type=TOKEN_TYPE,
            channel_data=snapshot,
            status=CredentialStatus.CONNECTED.value,
            connected_at=now,
        )
        logger.info("Stored credentials for channel %s", channel)
        return record

    async def find(self, channel_identity: str) -> Optional[ChannelCredential]:
        channel = normalize_channel_identity(channel_identity)
        return await self.repo.get_by_channel(channel, include_secrets=True)

    async def mark_status(self, channel_identity: str, status: CredentialStatus) -> bool:
        channel = normalize_channel_identity(channel_identity)
        updated = await self.repo.update_status(channel, CredentialStatus(status).value)
        if updated:
            logger.warning("Channel %s marked %s", channel, CredentialStatus(status).value)
        return updated

    async def remove(self, channel_identity: str) -> bool:
        channel = normalize_channel_identity(channel_identity)
        removed = await self.repo.delete_by_channel(channel)
        if removed:
            logger.info("Disconnected channel %s", channel)
        return removed

    async def list_all(self, include_secrets: bool = False) -> list[ChannelCredential]:
        return await self.repo.list_all(include_secrets=include_secrets)

    async def get_channel_data(self, channel_identity: str) -> Optional[dict[str, Any]]:
        channel = normalize_channel_identity(channel_identity)
        record = await self.repo.get_by_channel(channel)
        if not record:
            return None
        return channel_data_view(record)

    def decrypt_access_token(self, record: ChannelCredential) -> str:
        return self.cipher.decrypt(record.encrypted_access_token)

    def decrypt_refresh_token(self, record: ChannelCredential) -> Optional[str]:
        if not record.encrypted_refresh_token:
            return None
        return self.cipher.decrypt(record.encrypted_refresh_token)


def channel_data_view(record: ChannelCredential) -> dict[str, Any]:
    """Provider snapshot merged with the store-owned ``connected_at`` and ``status``."""
    return {
        **(record.channel_data or {}),
        "connected_at": record.connected_at,
        "status": record.status,
    }
