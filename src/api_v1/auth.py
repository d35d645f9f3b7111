"""Admin login and session endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm

from src.api_v1.schemas import IdentityResponse, Token
from src.core.config import Settings, get_settings
from src.core.dependencies import get_current_identity, get_session_authenticator
from src.core.services.auth_service import authenticate_admin
from src.core.services.security import Identity, SessionAuthenticator, StreamerIdentity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def build_session(identity: Identity, authenticator: SessionAuthenticator) -> Token:
    channel = identity.channel_identity if isinstance(identity, StreamerIdentity) else None
    return Token(
        access_token=authenticator.issue(identity),
        token_type="bearer",
        role=identity.role.value,
        channel=channel,
        expires_in=int(authenticator.default_ttl.total_seconds()),
    )


def set_session_cookie(response: Response, session: Token, settings: Settings) -> None:
    response.set_cookie(
        key=settings.jwt.cookie_name,
        value=session.access_token,
        max_age=session.expires_in,
        httponly=True,
        secure=settings.jwt.cookie_secure,
        samesite="lax",
    )


@router.post("/token", response_model=Token)
async def login_for_access_token(
    response: Response,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    authenticator: Annotated[SessionAuthenticator, Depends(get_session_authenticator)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Token:
    """
    Authenticate the admin credentials issued as form data and respond with a bearer token.
    """
    identity = authenticate_admin(form_data.username, form_data.password, settings.admin)
    if not identity:
        logger.warning("Admin authentication failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    session = build_session(identity, authenticator)
    set_session_cookie(response, session, settings)
    logger.info("Issued admin session")
    return session


@router.get("/me", response_model=IdentityResponse)
async def read_current_identity(
    identity: Annotated[Identity, Depends(get_current_identity)],
) -> IdentityResponse:
    channel = identity.channel_identity if isinstance(identity, StreamerIdentity) else None
    return IdentityResponse(role=identity.role.value, channel=channel)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(settings: Annotated[Settings, Depends(get_settings)]) -> Response:
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.jwt.cookie_name)
    return response
