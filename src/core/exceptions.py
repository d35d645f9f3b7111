"""Domain errors raised by the credential subsystem."""

from __future__ import annotations

from enum import Enum


class StreamControlError(Exception):
    """Base class for all application errors."""


class ConfigError(StreamControlError):
    """Missing or malformed key material; the subsystem cannot start."""


class ValidationError(StreamControlError):
    """Input rejected before any I/O took place."""


class CryptoError(StreamControlError):
    """Ciphertext could not be authenticated or decoded."""

    def __init__(self, message: str = "invalid or tampered data"):
        super().__init__(message)


class ProviderError(StreamControlError):
    """The OAuth provider rejected or failed a token exchange."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        revoked: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.revoked = revoked


class AuthErrorReason(str, Enum):
    MISSING = "missing"
    INVALID = "invalid"
    FORBIDDEN = "forbidden"


class AuthError(StreamControlError):
    """Session credential missing, invalid, expired, or not allowed."""

    def __init__(self, reason: AuthErrorReason, message: str = "Could not validate credentials"):
        super().__init__(message)
        self.reason = reason

    @classmethod
    def missing(cls) -> "AuthError":
        return cls(AuthErrorReason.MISSING, "Not authenticated")

    @classmethod
    def invalid(cls) -> "AuthError":
        return cls(AuthErrorReason.INVALID)

    @classmethod
    def forbidden(cls) -> "AuthError":
        return cls(AuthErrorReason.FORBIDDEN, "Not enough permissions")
