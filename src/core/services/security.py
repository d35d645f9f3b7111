"""Password hashing and signed session credentials."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Optional, Union

import jwt
from jwt import InvalidTokenError
from pwdlib import PasswordHash

from src.core.exceptions import AuthError, ConfigError
from src.core.services.credential_store import normalize_channel_identity
from src.core.utils.time import now_utc

logger = logging.getLogger(__name__)

password_hash = PasswordHash.recommended()

DEFAULT_SESSION_TTL = timedelta(hours=12)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return password_hash.verify(plain_password, hashed_password)
    except ValueError:
        # Raised when the stored hash is invalid/corrupted
        return False


def hash_password(password: str) -> str:
    return password_hash.hash(password)


class Role(str, Enum):
    ADMIN = "admin"
    STREAMER = "streamer"


@dataclass(frozen=True)
class AdminIdentity:
    role: Role = Role.ADMIN


@dataclass(frozen=True)
class StreamerIdentity:
    channel_identity: str
    role: Role = Role.STREAMER


Identity = Union[AdminIdentity, StreamerIdentity]


def authorize_channel_access(identity: Identity, requested_channel: str) -> bool:
    """Admins may act on any channel; streamers only on the one they connected."""
    if isinstance(identity, AdminIdentity):
        return True
    if isinstance(identity, StreamerIdentity):
        return identity.channel_identity == (requested_channel or "").lower()
    return False


class SessionAuthenticator:
    """Issue and verify HMAC-signed session JWTs."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        default_ttl: timedelta = DEFAULT_SESSION_TTL,
    ):
        if not secret_key:
            raise ConfigError("Session signing secret is not set")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.default_ttl = default_ttl

    def issue(self, identity: Identity, ttl: Optional[timedelta] = None) -> str:
        now = now_utc()
        claims: dict[str, Any] = {
            "role": identity.role.value,
            "iat": now,
            "exp": now + (ttl or self.default_ttl),
        }
        if isinstance(identity, StreamerIdentity):
            channel = normalize_channel_identity(identity.channel_identity)
            claims["sub"] = channel
            claims["channel"] = channel
        else:
            claims["sub"] = Role.ADMIN.value
        return jwt.encode(claims, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthError.missing()

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "role"]},
                leeway=0,
            )
        except InvalidTokenError as exc:
            logger.debug("Rejected session credential: %s", exc.__class__.__name__)
            raise AuthError.invalid() from exc

        role = payload.get("role")
        if role == Role.ADMIN.value:
            return AdminIdentity()
        if role == Role.STREAMER.value:
            channel = payload.get("channel")
            if not channel:
                raise AuthError.invalid()
            return StreamerIdentity(channel_identity=channel)
        raise AuthError.invalid()

    def authorize(self, identity: Identity, requested_channel: str) -> None:
        """Raise ``AuthError`` unless ``identity`` may act on ``requested_channel``."""
        if not authorize_channel_access(identity, requested_channel):
            raise AuthError.forbidden()
