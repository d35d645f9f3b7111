"""Authentication helper functions."""

from __future__ import annotations

import hmac

from src.core.config import AdminSettings
from src.core.services.security import AdminIdentity, verify_password


def authenticate_admin(username: str, password: str, admin: AdminSettings) -> AdminIdentity | None:
    if not admin.enabled:
        return None
    if not hmac.compare_digest(username.encode("utf-8"), admin.username.encode("utf-8")):
        return None
    if not verify_password(password, admin.password_hash):
        return None
    return AdminIdentity()
