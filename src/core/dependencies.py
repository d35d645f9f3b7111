"""
FastAPI dependencies for dependency injection.

Process-wide collaborators (cipher, session authenticator, token manager)
are built once in ``create_app`` and read from ``app.state`` here.
"""

import logging
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.exceptions import AuthError
from src.core.models.db_helper import db_helper
from src.core.repositories.channel_credential_repository import ChannelCredentialRepository
from src.core.repositories.moderation_action_repository import ModerationActionRepository
from src.core.services.cipher import TokenCipher
from src.core.services.credential_store import CredentialStore, normalize_channel_identity
from src.core.services.moderation_ledger import ModerationLedger
from src.core.services.security import AdminIdentity, Identity, SessionAuthenticator
from src.core.services.token_manager import TokenManager
from src.core.services.twitch_oauth_service import TwitchOAuthService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# Database Dependencies
# ============================================================================


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get async database session.

    Yields:
        AsyncSession for database operations
    """
    async with db_helper.session_factory() as session:
        yield session


# ============================================================================
# Repository Dependencies
# ============================================================================


def get_channel_credential_repository(
    session: Annotated[AsyncSession, Depends(get_session)]
) -> ChannelCredentialRepository:
    """Get ChannelCredentialRepository instance."""
    return ChannelCredentialRepository(session)


def get_moderation_action_repository(
    session: Annotated[AsyncSession, Depends(get_session)]
) -> ModerationActionRepository:
    """Get ModerationActionRepository instance."""
    return ModerationActionRepository(session)


# ============================================================================
# Service Dependencies
# ============================================================================


def get_token_cipher(request: Request) -> TokenCipher:
    return request.app.state.token_cipher


def get_session_authenticator(request: Request) -> SessionAuthenticator:
    return request.app.state.session_authenticator


def get_twitch_oauth_service(request: Request) -> TwitchOAuthService:
    return request.app.state.twitch_oauth


def get_token_manager(request: Request) -> TokenManager:
    return request.app.state.token_manager


def get_credential_store(
    repo: Annotated[ChannelCredentialRepository, Depends(get_channel_credential_repository)],
    cipher: Annotated[TokenCipher, Depends(get_token_cipher)],
) -> CredentialStore:
    """Provide CredentialStore with encryption."""
    return CredentialStore(repo=repo, cipher=cipher)


def get_moderation_ledger(
    repo: Annotated[ModerationActionRepository, Depends(get_moderation_action_repository)],
) -> ModerationLedger:
    return ModerationLedger(repo)


# ============================================================================
# Authentication Dependencies
# ============================================================================


def get_session_token(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Optional[str]:
    """Session credential from the Authorization header, falling back to the cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.jwt.cookie_name)


def get_current_identity(
    token: Annotated[Optional[str], Depends(get_session_token)],
    authenticator: Annotated[SessionAuthenticator, Depends(get_session_authenticator)],
) -> Identity:
    return authenticator.verify(token)


def get_current_admin(
    identity: Annotated[Identity, Depends(get_current_identity)],
) -> AdminIdentity:
    if not isinstance(identity, AdminIdentity):
        raise AuthError.forbidden()
    return identity


def get_authorized_channel(
    channel: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    authenticator: Annotated[SessionAuthenticator, Depends(get_session_authenticator)],
) -> str:
    """Resolve the ``{channel}`` path parameter after checking the caller may use it.

    Authorization runs before any lookup so a denied caller learns nothing
    about whether the channel is connected.
    """
    authenticator.authorize(identity, channel)
    return normalize_channel_identity(channel)
