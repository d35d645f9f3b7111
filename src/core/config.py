"""Environment configuration for Stream Control."""

from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()

DEFAULT_TWITCH_SCOPES = (
    "analytics:read:extensions",
    "clips:edit",
    "bits:read",
    "analytics:read:games",
    "user:edit:broadcast",
    "user:read:broadcast",
    "chat:read",
    "chat:edit",
    "channel:moderate",
    "channel:read:subscriptions",
    "moderation:read",
    "channel:read:redemptions",
    "channel:edit:commercial",
    "channel:manage:extensions",
    "channel:manage:broadcast",
    "channel:manage:redemptions",
    "channel:read:editors",
    "channel:manage:videos",
    "user:read:subscriptions",
    "channel:manage:polls",
    "channel:manage:predictions",
    "channel:read:polls",
    "channel:read:predictions",
    "channel:read:goals",
    "moderator:read:automod_settings",
    "moderator:manage:automod_settings",
    "moderator:manage:banned_users",
    "moderator:read:blocked_terms",
    "moderator:manage:blocked_terms",
    "moderator:read:chat_settings",
    "moderator:manage:chat_settings",
    "moderator:manage:announcements",
    "moderator:manage:chat_messages",
    "channel:manage:moderators",
    "channel:read:vips",
    "channel:manage:vips",
    "moderator:read:shield_mode",
    "moderator:manage:shield_mode",
    "moderator:read:shoutouts",
    "moderator:manage:shoutouts",
    "moderator:read:followers",
    "channel:read:guest_star",
    "channel:manage:guest_star",
    "moderator:read:guest_star",
    "moderator:manage:guest_star",
    "channel:bot",
    "user:bot",
    "user:read:chat",
    "channel:manage:ads",
    "channel:read:ads",
    "user:read:moderated_channels",
    "moderator:read:unban_requests",
    "moderator:manage:unban_requests",
    "moderator:read:suspicious_users",
    "moderator:manage:warnings",
)


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _list_env(name: str, default: tuple[str, ...]) -> list[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item for item in value.replace("+", " ").replace(",", " ").split() if item]


class AppSettings(BaseModel):
    name: str = Field(
        default_factory=lambda: os.getenv("APP_NAME", "Stream Control").strip()
        or "Stream Control"
    )
    version: str = Field(
        default_factory=lambda: os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
    )
    debug: bool = Field(default_factory=lambda: _bool_env("DEBUG", False))
    log_level: str = Field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").strip().upper()
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: _list_env("CORS_ORIGINS", ("*",))
    )

    @model_validator(mode="after")
    def _validate(self) -> "AppSettings":
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(
                "LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL"
            )
        return self


class ServerSettings(BaseModel):
    host: str = Field(
        default_factory=lambda: os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0"
    )
    port: int = Field(default_factory=lambda: _int_env("PORT", 8000))


class DatabaseSettings(BaseModel):
    url: str = Field(default_factory=lambda: os.getenv("DATABASE_URL", "").strip())
    pool_size: int = Field(default_factory=lambda: _int_env("DATABASE_POOL_SIZE", 20))
    max_overflow: int = Field(
        default_factory=lambda: _int_env("DATABASE_MAX_OVERFLOW", 30)
    )

    @model_validator(mode="after")
    def _validate(self) -> "DatabaseSettings":
        if not self.url:
            raise ValueError("DATABASE_URL environment variable must be set.")
        if not self.url.startswith(
            ("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")
        ):
            raise ValueError(
                "DATABASE_URL must start with postgresql://, postgresql+asyncpg://, or sqlite+aiosqlite://"
            )
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class SecuritySettings(BaseModel):
    secret_key: str = Field(
        default_factory=lambda: os.getenv("JWT_SECRET_KEY", "").strip()
    )

    @model_validator(mode="after")
    def _validate(self) -> "SecuritySettings":
        if not self.secret_key:
            raise ValueError("JWT_SECRET_KEY environment variable must be set.")
        return self


class JWTSettings(BaseModel):
    algorithm: str = Field(
        default_factory=lambda: os.getenv("JWT_ALGORITHM", "HS256").strip() or "HS256"
    )
    expire_minutes: int = Field(
        default_factory=lambda: _int_env("JWT_EXPIRE_MINUTES", 60 * 12)
    )
    cookie_name: str = Field(
        default_factory=lambda: os.getenv("SESSION_COOKIE_NAME", "session").strip()
        or "session"
    )
    cookie_secure: bool = Field(
        default_factory=lambda: _bool_env("SESSION_COOKIE_SECURE", True)
    )


class EncryptionSettings(BaseModel):
    key: str = Field(
        default_factory=lambda: os.getenv("TOKEN_ENCRYPTION_KEY", "").strip()
    )

    @model_validator(mode="after")
    def _validate(self) -> "EncryptionSettings":
        if not self.key:
            raise ValueError("TOKEN_ENCRYPTION_KEY environment variable must be set.")
        if len(self.key) != 64:
            raise ValueError(
                "TOKEN_ENCRYPTION_KEY must be 64 hex characters (32 bytes)."
            )
        return self


class TwitchSettings(BaseModel):
    client_id: str = Field(
        default_factory=lambda: os.getenv("TWITCH_CLIENT_ID", "").strip()
    )
    client_secret: str = Field(
        default_factory=lambda: os.getenv("TWITCH_CLIENT_SECRET", "").strip()
    )
    redirect_uri: str = Field(
        default_factory=lambda: os.getenv("TWITCH_REDIRECT_URI", "").strip()
    )
    oauth_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "TWITCH_OAUTH_BASE_URL", "https://id.twitch.tv/oauth2"
        ).strip().rstrip("/")
    )
    helix_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "TWITCH_HELIX_BASE_URL", "https://api.twitch.tv/helix"
        ).strip().rstrip("/")
    )
    scopes: list[str] = Field(
        default_factory=lambda: _list_env("TWITCH_SCOPES", DEFAULT_TWITCH_SCOPES)
    )
    http_timeout: float = Field(
        default_factory=lambda: _float_env("TWITCH_HTTP_TIMEOUT", 5.0)
    )

    @model_validator(mode="after")
    def _validate(self) -> "TwitchSettings":
        if not self.client_id:
            raise ValueError("TWITCH_CLIENT_ID environment variable must be set.")
        if not self.client_secret:
            raise ValueError("TWITCH_CLIENT_SECRET environment variable must be set.")
        if not self.redirect_uri:
            raise ValueError("TWITCH_REDIRECT_URI environment variable must be set.")
        return self


class AdminSettings(BaseModel):
    username: str = Field(
        default_factory=lambda: os.getenv("ADMIN_USERNAME", "").strip()
    )
    password_hash: str = Field(
        default_factory=lambda: os.getenv("ADMIN_PASSWORD_HASH", "").strip()
    )

    @property
    def enabled(self) -> bool:
        return bool(self.username and self.password_hash)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    twitch: TwitchSettings = Field(default_factory=TwitchSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)

    model_config = dict(extra="ignore")

    # Compatibility helpers -------------------------------------------------
    @property
    def app_name(self) -> str:
        return self.app.name

    @property
    def app_version(self) -> str:
        return self.app.version

    @property
    def debug(self) -> bool:
        return self.app.debug

    @property
    def log_level(self) -> str:
        return self.app.log_level

    @property
    def host(self) -> str:
        return self.server.host

    @property
    def port(self) -> int:
        return self.server.port

    @property
    def database_url(self) -> str:
        return self.database.url

    @property
    def secret_key(self) -> str:
        return self.security.secret_key

    @property
    def token_encryption_key(self) -> str:
        return self.encryption.key


@lru_cache
def get_settings() -> Settings:
    return Settings()
