"""Read, lazily refresh, and write per-channel OAuth tokens."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import ProviderError, ValidationError
from src.core.interfaces import CredentialStoreProtocol, OAuthProvider
from src.core.models.channel_credential import ChannelCredential, CredentialStatus
from src.core.repositories.channel_credential_repository import ChannelCredentialRepository
from src.core.services.cipher import TokenCipher
from src.core.services.credential_store import CredentialStore, normalize_channel_identity
from src.core.utils.time import now_utc, to_utc

logger = logging.getLogger(__name__)

REFRESH_WINDOW = timedelta(minutes=5)


class TokenState(str, Enum):
    ABSENT = "absent"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED = "expired"
    REFRESH_FAILED = "refresh_failed"


def refresh_threshold(record: ChannelCredential) -> datetime:
    return to_utc(record.expires_at) - REFRESH_WINDOW


def token_state(record: Optional[ChannelCredential], now: datetime) -> TokenState:
    if record is None:
        return TokenState.ABSENT
    if record.status != CredentialStatus.CONNECTED.value:
        return TokenState.REFRESH_FAILED
    if now >= to_utc(record.expires_at):
        return TokenState.EXPIRED
    if now >= refresh_threshold(record):
        return TokenState.NEAR_EXPIRY
    return TokenState.VALID


class TokenManager:
    """Serve live access tokens for connected channels.

    At most one provider refresh is in flight per channel. Callers that
    arrive while it runs await the same task and share its outcome, success
    or failure. The refresh-and-persist unit runs in its own session under a
    per-channel lock and is shielded from caller cancellation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
        oauth: OAuthProvider,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._session_factory = session_factory
        self.cipher = cipher
        self.oauth = oauth
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pending: set[asyncio.Task] = set()
        self._inflight: dict[str, asyncio.Task] = {}

    def _store(self, session: AsyncSession) -> CredentialStoreProtocol:
        return CredentialStore(ChannelCredentialRepository(session), self.cipher, clock=self._clock)

    def now(self) -> datetime:
        return self._clock()

    async def get_access_token(self, channel_identity: str) -> Optional[str]:
        """Return a decrypted access token, or ``None`` when the channel must reconnect."""
        channel = normalize_channel_identity(channel_identity)

        async with self._session_factory() as session:
            store = self._store(session)
            record = await store.find(channel)
            if record is None:
                return None
            if self.now() < refresh_threshold(record):
                return store.decrypt_access_token(record)

        logger.info("Access token for %s is within the refresh window", channel)
        if not await self._shared_refresh(channel, force=False):
            return None

        async with self._session_factory() as session:
            store = self._store(session)
            record = await store.find(channel)
            if record is None:
                return None
            return store.decrypt_access_token(record)

    async def refresh(self, channel_identity: str) -> bool:
        """Exchange the stored refresh token for a new pair, unconditionally."""
        channel = normalize_channel_identity(channel_identity)
        return await self._shared_refresh(channel, force=True)

    async def connect(self, code: str) -> ChannelCredential:
        """Complete the OAuth code flow and store tokens under the returned login."""
        tokens = await self.oauth.exchange_code(code)
        if not tokens.refresh_token:
            raise ProviderError("Twitch did not return a refresh token")
        channel_data = await self.oauth.fetch_user(tokens.access_token)
        channel = normalize_channel_identity(channel_data.get("login"))

        async with self._locks[channel]:
            async with self._session_factory() as session:
                record = await self._store(session).upsert(channel, tokens, channel_data)
                await session.commit()
        logger.info("Channel %s connected", channel)
        return record

    async def disconnect(self, channel_identity: str) -> bool:
        channel = normalize_channel_identity(channel_identity)
        async with self._locks[channel]:
            async with self._session_factory() as session:
                removed = await self._store(session).remove(channel)
                await session.commit()
        return removed

    async def get_state(self, channel_identity: str) -> TokenState:
        channel = normalize_channel_identity(channel_identity)
        async with self._session_factory() as session:
            record = await self._store(session).find(channel)
        return token_state(record, self.now())

    async def _shared_refresh(self, channel: str, *, force: bool) -> bool:
        task = self._inflight.get(channel)
        if task is None:
            task = asyncio.ensure_future(self._refresh_locked(channel, force=force))
            self._inflight[channel] = task
            # Keep a strong reference so a cancelled caller does not orphan the task
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(lambda done: self._forget(channel, done))
        else:
            logger.debug("Joining the refresh already in flight for %s", channel)
        return await asyncio.shield(task)

    def _forget(self, channel: str, task: asyncio.Task) -> None:
        if self._inflight.get(channel) is task:
            del self._inflight[channel]

    async def _refresh_locked(self, channel: str, *, force: bool) -> bool:
        async with self._locks[channel]:
            async with self._session_factory() as session:
                store = self._store(session)
                record = await store.find(channel)
                if record is None:
                    logger.info("No credentials stored for %s; nothing to refresh", channel)
                    return False

                if not force and self.now() < refresh_threshold(record):
                    # Another caller refreshed while we waited for the lock
                    return True

                if not force and record.status == CredentialStatus.REVOKED.value:
                    # Only a forced refresh or a reconnect retries a revoked grant
                    logger.info("Credentials for %s are revoked; skipping refresh", channel)
                    return False

                refresh_token = store.decrypt_refresh_token(record)
                if not refresh_token:
                    logger.warning("No refresh token available for %s", channel)
                    return False

                try:
                    tokens = await self.oauth.refresh_access_token(refresh_token)
                except ProviderError as exc:
                    status = CredentialStatus.REVOKED if exc.revoked else CredentialStatus.EXPIRED
                    await store.mark_status(channel, status)
                    await session.commit()
                    logger.warning("Token refresh failed for %s; channel needs reconnect", channel)
                    return False

                tokens.refresh_token = tokens.refresh_token or refresh_token
                tokens.scope = tokens.scope or list(record.scope or [])
                try:
                    await store.upsert(channel, tokens, dict(record.channel_data or {}))
                except ValidationError:
                    logger.error("Twitch returned an unusable token payload for %s", channel)
                    await store.mark_status(channel, CredentialStatus.EXPIRED)
                    await session.commit()
                    return False
                await session.commit()

        logger.info("Refreshed tokens for %s", channel)
        return True
