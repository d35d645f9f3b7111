"""Append-only audit log of moderation actions with per-moderator reporting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from src.core.exceptions import ValidationError
from src.core.models.moderation_action import (
    MAX_REASON_LENGTH,
    MAX_TIMEOUT_SECONDS,
    ModerationAction,
    ModerationActionType,
)
from src.core.repositories.moderation_action_repository import ModerationActionRepository
from src.core.services.credential_store import normalize_channel_identity
from src.core.utils.time import now_utc, to_utc

logger = logging.getLogger(__name__)

STATS_ACTION_TYPES = (ModerationActionType.BAN.value, ModerationActionType.TIMEOUT.value)
STATS_LIMIT = 50


@dataclass
class ModerationEntry:
    channel_identity: str
    moderator_identity: str
    moderator_display_name: str
    action_type: ModerationActionType | str
    target_user: Optional[str] = None
    duration: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class ModeratorStats:
    moderator_identity: str
    moderator_display_name: str
    total_actions: int
    bans: int
    timeouts: int
    last_action_at: datetime


class ModerationLedger:
    """Record privileged actions and report who has been doing them."""

    def __init__(
        self,
        repo: ModerationActionRepository,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.repo = repo
        self._clock = clock

    @staticmethod
    def validate(entry: ModerationEntry) -> ModerationAction:
        channel = normalize_channel_identity(entry.channel_identity)
        try:
            action_type = ModerationActionType(entry.action_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown action type {entry.action_type!r}") from exc

        moderator_identity = (entry.moderator_identity or "").strip()
        moderator_name = (entry.moderator_display_name or "").strip()
        if not moderator_identity or not moderator_name:
            raise ValidationError("Moderator identity and display name are required")

        duration = None
        if action_type is ModerationActionType.TIMEOUT:
            duration = entry.duration
            if isinstance(duration, bool) or not isinstance(duration, int):
                raise ValidationError("Timeout duration is required")
            if not 0 < duration <= MAX_TIMEOUT_SECONDS:
                raise ValidationError(
                    f"Timeout duration must be between 1 and {MAX_TIMEOUT_SECONDS} seconds"
                )

        reason = entry.reason.strip() if entry.reason else None
        if reason and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Reason cannot exceed {MAX_REASON_LENGTH} characters")

        target = entry.target_user.strip() if entry.target_user else None
        return ModerationAction(
            channel_identity=channel,
            moderator_identity=moderator_identity,
            moderator_display_name=moderator_name,
            action_type=action_type.value,
            target_user=target or None,
            duration=duration,
            reason=reason or None,
        )

    async def record(self, entry: ModerationEntry) -> ModerationAction:
        action = self.validate(entry)
        action.timestamp = self._clock()
        await self.repo.create(action)
        logger.info(
            "Recorded %s on channel %s by moderator %s",
            action.action_type,
            action.channel_identity,
            action.moderator_identity,
        )
        return action

    async def record_best_effort(self, entry: ModerationEntry) -> Optional[ModerationAction]:
        """Record ``entry`` and commit; failures are logged, never raised."""
        try:
            action = await self.record(entry)
            await self.repo.session.commit()
            return action
        except (ValidationError, SQLAlchemyError) as exc:
            logger.error("Failed to log moderation action: %s", exc)
            try:
                await self.repo.session.rollback()
            except SQLAlchemyError:
                logger.exception("Rollback after failed moderation log also failed")
            return None

    async def aggregate_stats(self, channel_identity: str, window_days: int = 30) -> list[ModeratorStats]:
        channel = normalize_channel_identity(channel_identity)
        if window_days < 0:
            raise ValidationError("Window must be zero or more days")

        now = self._clock()
        rows = await self.repo.aggregate_by_moderator(
            channel,
            action_types=STATS_ACTION_TYPES,
            since=now - timedelta(days=window_days),
            until=now,
            limit=STATS_LIMIT,
            count_types=STATS_ACTION_TYPES,
        )
        return [
            ModeratorStats(
                moderator_identity=row["moderator_identity"],
                moderator_display_name=row["moderator_display_name"],
                total_actions=int(row["total_actions"]),
                bans=int(row[ModerationActionType.BAN.value] or 0),
                timeouts=int(row[ModerationActionType.TIMEOUT.value] or 0),
                last_action_at=to_utc(row["last_action_at"]),
            )
            for row in rows
        ]
