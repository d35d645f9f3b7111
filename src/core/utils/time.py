"""Timezone helpers; everything inside the app is timezone-aware UTC."""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC, treating naive values as UTC.

    SQLite drops tzinfo on round-trip, so values read back from it are naive.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_utc(value: datetime | None = None) -> str:
    return to_utc(value or now_utc()).isoformat()
