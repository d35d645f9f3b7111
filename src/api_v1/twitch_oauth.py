"""Twitch OAuth connect flow."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from typing import Annotated, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from src.api_v1.auth import build_session, set_session_cookie
from src.api_v1.schemas import AuthorizeUrlResponse, ConnectResponse
from src.core.config import Settings, get_settings
from src.core.dependencies import (
    get_session_authenticator,
    get_token_manager,
    get_twitch_oauth_service,
)
from src.core.exceptions import ProviderError, ValidationError
from src.core.services.security import SessionAuthenticator, StreamerIdentity
from src.core.services.token_manager import TokenManager
from src.core.services.twitch_oauth_service import TwitchOAuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/twitch", tags=["twitch-oauth"])

STATE_TTL_SECONDS = 600


def _sign_state(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state(secret: str, redirect_to: Optional[str] = None) -> str:
    nonce = uuid4().hex
    expires_at = int(time.time()) + STATE_TTL_SECONDS
    redirect_b64 = (
        base64.urlsafe_b64encode(redirect_to.encode("utf-8")).decode("utf-8").rstrip("=")
        if redirect_to
        else ""
    )
    payload = f"{nonce}:{expires_at}:{redirect_b64}"
    return f"{payload}:{_sign_state(payload, secret)}"


def validate_state(state: str, secret: str) -> Optional[str]:
    """Check signature and expiry; return the redirect target carried in the state."""
    parts = state.split(":")
    if len(parts) != 4:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid state parameter")
    nonce, exp_str, redirect_b64, signature = parts

    expected_sig = _sign_state(f"{nonce}:{exp_str}:{redirect_b64}", secret)
    if not hmac.compare_digest(signature, expected_sig):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid state signature")

    try:
        expires_at = int(exp_str)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid state parameter")
    if expires_at < int(time.time()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expired state parameter")

    if not redirect_b64:
        return None
    padded = redirect_b64 + "=" * (-len(redirect_b64) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None


def is_allowed_redirect(target: str, allowed_origins: list[str]) -> bool:
    """Accept same-site paths and absolute URLs on an explicitly listed origin."""
    if "\\" in target:
        return False
    parsed = urlparse(target)
    if not parsed.scheme and not parsed.netloc:
        return target.startswith("/") and not target.startswith("//")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    origin = f"{parsed.scheme}://{parsed.netloc}".lower()
    # A wildcard CORS entry never widens the redirect allow-list
    return origin in {o.rstrip("/").lower() for o in allowed_origins if o != "*"}


def _with_query(url: str, extra: dict[str, str]) -> str:
    parsed = urlparse(url)
    current_qs = dict(parse_qsl(parsed.query, keep_blank_values=True))
    current_qs.update(extra)
    return urlunparse(parsed._replace(query=urlencode(current_qs, doseq=True)))


@router.get("/authorize", response_class=Response, response_model=None)
async def authorize(
    settings: Annotated[Settings, Depends(get_settings)],
    oauth: Annotated[TwitchOAuthService, Depends(get_twitch_oauth_service)],
    redirect_to: Optional[str] = Query(default=None),
    return_url: bool = Query(
        True,
        description="Return JSON with the consent URL instead of redirecting.",
    ),
) -> Response:
    """Build the Twitch consent screen URL."""
    if redirect_to and not is_allowed_redirect(redirect_to, settings.app.cors_origins):
        logger.warning("Rejected redirect target outside the allowed origins")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid redirect target")
    state = generate_state(settings.security.secret_key, redirect_to)
    consent_url = oauth.build_authorize_url(state)
    if return_url:
        return JSONResponse(AuthorizeUrlResponse(auth_url=consent_url).model_dump())
    return RedirectResponse(consent_url)


@router.get("/callback", response_class=Response, response_model=None)
async def callback(
    settings: Annotated[Settings, Depends(get_settings)],
    token_manager: Annotated[TokenManager, Depends(get_token_manager)],
    authenticator: Annotated[SessionAuthenticator, Depends(get_session_authenticator)],
    code: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
    error: Annotated[Optional[str], Query()] = None,
) -> Response:
    """Exchange the code, store encrypted tokens, and start a streamer session."""
    if error:
        logger.warning("Twitch consent declined: %s", error)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Authorization was declined")
    if not code or not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code or state")

    redirect_to = validate_state(state, settings.security.secret_key)

    try:
        record = await token_manager.connect(code)
    except (ProviderError, ValidationError) as exc:
        logger.error("Twitch connect failed: %s", exc)
        if redirect_to:
            return RedirectResponse(_with_query(redirect_to, {"twitch_status": "auth_failed"}))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Failed to connect Twitch account",
        )

    # The session is bound to the login Twitch returned, never to client input
    session = build_session(
        StreamerIdentity(channel_identity=record.channel_identity), authenticator
    )

    if redirect_to:
        response: Response = RedirectResponse(
            _with_query(
                redirect_to,
                {"twitch_status": "connected", "channel": record.channel_identity},
            )
        )
    else:
        body = ConnectResponse(channel=record.channel_identity, session=session)
        response = JSONResponse(body.model_dump(mode="json"))
    set_session_cookie(response, session, settings)
    return response
