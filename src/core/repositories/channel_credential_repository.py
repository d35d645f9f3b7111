"""Repository for encrypted channel credentials."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from src.core.models.channel_credential import ChannelCredential
from src.core.repositories.base import BaseRepository

_SECRET_COLUMNS = (
    ChannelCredential.encrypted_access_token,
    ChannelCredential.encrypted_refresh_token,
)


class ChannelCredentialRepository(BaseRepository[ChannelCredential]):
    """Data access for channel credentials keyed by channel identity."""

    def __init__(self, session: AsyncSession):
        super().__init__(ChannelCredential, session)

    def _select(self, include_secrets: bool):
        stmt = select(ChannelCredential)
        if include_secrets:
            stmt = stmt.options(*(undefer(column) for column in _SECRET_COLUMNS))
        return stmt.execution_options(populate_existing=True)

    async def get_by_channel(
        self, channel_identity: str, include_secrets: bool = False
    ) -> Optional[ChannelCredential]:
        result = await self.session.execute(
            self._select(include_secrets).where(
                ChannelCredential.channel_identity == channel_identity
            )
        )
        return result.scalar_one_or_none()

    async def list_all(self, include_secrets: bool = False) -> list[ChannelCredential]:
        result = await self.session.execute(
            self._select(include_secrets).order_by(
                ChannelCredential.connected_at.desc(),
                ChannelCredential.channel_identity,
            )
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        *,
        channel_identity: str,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        expires_at: datetime,
        scope: list[str],
        token_type: str,
        channel_data: dict[str, Any],
        status: str,
        connected_at: datetime,
    ) -> ChannelCredential:
        """Insert or overwrite the row for ``channel_identity`` in one statement."""
        values = {
            "encrypted_access_token": encrypted_access_token,
            "encrypted_refresh_token": encrypted_refresh_token,
            "expires_at": expires_at,
            "scope": scope,
            "token_type": token_type,
            "channel_data": channel_data,
            "status": status,
            "connected_at": connected_at,
        }

        dialect = self.dialect_name
        if dialect == "postgresql":
            insert_stmt = postgresql.insert(ChannelCredential)
        elif dialect == "sqlite":
            insert_stmt = sqlite.insert(ChannelCredential)
        else:
            raise NotImplementedError(f"Atomic upsert not supported for dialect {dialect!r}")

        stmt = insert_stmt.values(
            id=str(uuid4()),
            channel_identity=channel_identity,
            **values,
        ).on_conflict_do_update(
            index_elements=["channel_identity"],
            set_={**values, "updated_at": func.now()},
        )
        await self.session.execute(stmt)

        token = await self.get_by_channel(channel_identity, include_secrets=True)
        if token is None:  # pragma: no cover - the row was just written
            raise RuntimeError(f"Upsert for {channel_identity} did not persist")
        return token

    async def update_status(self, channel_identity: str, status: str) -> bool:
        result = await self.session.execute(
            update(ChannelCredential)
            .where(ChannelCredential.channel_identity == channel_identity)
            .values(status=status, updated_at=func.now())
        )
        return result.rowcount > 0

    async def delete_by_channel(self, channel_identity: str) -> bool:
        result = await self.session.execute(
            delete(ChannelCredential).where(
                ChannelCredential.channel_identity == channel_identity
            )
        )
        return result.rowcount > 0
