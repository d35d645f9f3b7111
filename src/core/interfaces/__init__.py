"""
Service interfaces/protocols for dependency injection.

The token manager depends on these rather than on concrete classes so a
different provider or storage backend can be swapped in.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from src.core.models.channel_credential import ChannelCredential, CredentialStatus
from src.core.services.credential_store import OAuthTokens


class OAuthProvider(Protocol):
    async def exchange_code(self, code: str) -> OAuthTokens: ...

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens: ...

    async def fetch_user(self, access_token: str) -> dict[str, Any]: ...


class CredentialStoreProtocol(Protocol):
    async def upsert(
        self, channel_identity: str, tokens: OAuthTokens, channel_data: dict[str, Any]
    ) -> ChannelCredential: ...

    async def find(self, channel_identity: str) -> Optional[ChannelCredential]: ...

    async def mark_status(self, channel_identity: str, status: CredentialStatus) -> bool: ...

    async def remove(self, channel_identity: str) -> bool: ...

    async def list_all(self, include_secrets: bool = False) -> list[ChannelCredential]: ...

    def decrypt_access_token(self, record: ChannelCredential) -> str: ...

    def decrypt_refresh_token(self, record: ChannelCredential) -> Optional[str]: ...
