# src/campus_sync/timeutils.py
"""Timestamp helpers. All timestamps are stored as ISO-8601 strings in UTC."""

from datetime import datetime, timedelta, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string as produced by SQLite, Postgres or Python.

    Naive values are taken to be UTC. Returns None for empty input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        # SQLite CURRENT_TIMESTAMP uses a space separator
        if len(text) > 10 and text[10] == " ":
            text = text[:10] + "T" + text[11:]
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def last_modified(row: dict) -> datetime:
    """max(updated_at, created_at); the conflict-resolution clock of a row."""
    stamps = [
        parse_timestamp(row.get("updated_at")),
        parse_timestamp(row.get("created_at")),
    ]
    stamps = [s for s in stamps if s is not None]
    return max(stamps) if stamps else EPOCH


def backoff_delay(attempts: int, base: float, maximum: float) -> timedelta:
    """Exponential delay for the n-th consecutive failure (n >= 1)."""
    exponent = min(max(attempts - 1, 0), 32)
    seconds = min(base * (2 ** exponent), maximum)
    return timedelta(seconds=seconds)
