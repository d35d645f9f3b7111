"""Repository for the moderation action ledger."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.models.moderation_action import ModerationAction
from src.core.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class ModerationActionRepository(BaseRepository[ModerationAction]):
    """Insert and aggregate moderation actions. Rows are never updated."""

    def __init__(self, session: AsyncSession):
        super().__init__(ModerationAction, session)

    async def get_by_channel(
        self,
        channel_identity: str,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ModerationAction]:
        """
        Get the most recent actions recorded for a channel.

        Args:
            channel_identity: Broadcaster the actions were taken against
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            List of ModerationAction instances, newest first
        """
        result = await self.session.execute(
            select(ModerationAction)
            .where(ModerationAction.channel_identity == channel_identity)
            .order_by(ModerationAction.timestamp.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_by_channel(self, channel_identity: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ModerationAction)
            .where(ModerationAction.channel_identity == channel_identity)
        )
        return result.scalar_one()

    async def aggregate_by_moderator(
        self,
        channel_identity: str,
        *,
        action_types: Sequence[str],
        since: datetime,
        until: datetime,
        limit: int,
        count_types: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """
        Group matching actions by moderator.

        Args:
            channel_identity: Broadcaster the actions were taken against
            action_types: Action types included in the totals
            since: Inclusive lower bound on the action timestamp
            until: Inclusive upper bound on the action timestamp
            limit: Maximum number of moderators returned
            count_types: Action types that also get a per-type count column

        Returns:
            Rows ordered by total actions (desc) then moderator identity (asc)
        """
        total = func.count(ModerationAction.id).label("total_actions")
        per_type = [
            func.sum(case((ModerationAction.action_type == action_type, 1), else_=0)).label(
                action_type
            )
            for action_type in count_types
        ]
        stmt = (
            select(
                ModerationAction.moderator_identity,
                func.max(ModerationAction.moderator_display_name).label("moderator_display_name"),
                total,
                *per_type,
                func.max(ModerationAction.timestamp).label("last_action_at"),
            )
            .where(
                ModerationAction.channel_identity == channel_identity,
                ModerationAction.action_type.in_(list(action_types)),
                ModerationAction.timestamp >= since,
                ModerationAction.timestamp <= until,
            )
            .group_by(ModerationAction.moderator_identity)
            .order_by(total.desc(), ModerationAction.moderator_identity.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        rows = [dict(row) for row in result.mappings().all()]
        logger.debug(
            "Aggregated %d moderators for channel %s", len(rows), channel_identity
        )
        return rows
