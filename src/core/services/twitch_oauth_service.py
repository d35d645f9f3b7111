"""Twitch OAuth client: consent URL, code exchange, refresh, user lookup."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.core.config import TwitchSettings
from src.core.exceptions import ProviderError
from src.core.services.credential_store import OAuthTokens

logger = logging.getLogger(__name__)

# Twitch answers a dead refresh token with 400 "Invalid refresh token"
_REVOKED_MARKERS = ("invalid refresh token", "invalid_grant")


def _json_object(resp: httpx.Response, action: str) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        logger.error("Twitch %s returned a non-JSON body: status=%s", action, resp.status_code)
        raise ProviderError(f"Twitch {action} returned an unreadable body") from exc
    if not isinstance(data, dict):
        logger.error("Twitch %s returned %s instead of an object", action, type(data).__name__)
        raise ProviderError(f"Twitch {action} returned an unexpected payload")
    return data


class TwitchOAuthService:
    """Thin wrapper around the Twitch identity endpoints."""

    PROVIDER = "twitch"

    def __init__(
        self,
        settings: TwitchSettings,
        http_client: type[httpx.AsyncClient] = httpx.AsyncClient,
    ):
        self.settings = settings
        self._http_client = http_client

    @property
    def token_url(self) -> str:
        return f"{self.settings.oauth_base_url}/token"

    @property
    def authorize_url(self) -> str:
        return f"{self.settings.oauth_base_url}/authorize"

    @property
    def users_url(self) -> str:
        return f"{self.settings.helix_base_url}/users"

    def build_authorize_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "scope": " ".join(self.settings.scopes),
            "force_verify": "true",
            "state": state,
        }
        return f"{self.authorize_url}?{httpx.QueryParams(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        payload = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.settings.redirect_uri,
        }
        return OAuthTokens.from_payload(await self._post_token(payload, "code exchange"))

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        payload = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return OAuthTokens.from_payload(await self._post_token(payload, "refresh"))

    async def fetch_user(self, access_token: str) -> dict[str, Any]:
        """Return the Helix profile of the user that owns ``access_token``."""
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Client-Id": self.settings.client_id,
        }
        try:
            async with self._http_client(timeout=self.settings.http_timeout) as client:
                resp = await client.get(self.users_url, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Twitch user lookup failed: %s", exc.__class__.__name__)
            raise ProviderError("Twitch user lookup failed") from exc

        if resp.status_code != 200:
            logger.error("Twitch user lookup failed: status=%s", resp.status_code)
            raise ProviderError("Twitch user lookup failed", status_code=resp.status_code)

        items = _json_object(resp, "user lookup").get("data") or []
        if not isinstance(items, list):
            raise ProviderError("Twitch user lookup returned an unexpected payload")
        if not items:
            raise ProviderError("No channel data returned from Twitch")

        user = items[0]
        return {
            "id": user.get("id"),
            "login": user.get("login"),
            "display_name": user.get("display_name"),
            "profile_image_url": user.get("profile_image_url"),
            "broadcaster_type": user.get("broadcaster_type"),
        }

    async def _post_token(self, payload: dict[str, str], action: str) -> dict[str, Any]:
        try:
            async with self._http_client(timeout=self.settings.http_timeout) as client:
                resp = await client.post(self.token_url, data=payload)
        except httpx.HTTPError as exc:
            logger.error("Twitch token %s failed: %s", action, exc.__class__.__name__)
            raise ProviderError(f"Twitch token {action} failed") from exc

        if resp.status_code != 200:
            # Response bodies are not logged; they can echo request secrets
            body = (resp.text or "").lower()
            revoked = resp.status_code in (400, 401) and any(
                marker in body for marker in _REVOKED_MARKERS
            )
            logger.error(
                "Twitch token %s failed: status=%s revoked=%s",
                action,
                resp.status_code,
                revoked,
            )
            raise ProviderError(
                f"Twitch token {action} failed",
                status_code=resp.status_code,
                revoked=revoked,
            )

        return _json_object(resp, f"token {action}")
