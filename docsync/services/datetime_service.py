"""Timestamp helpers: every stored timestamp goes through ``format_datetime``."""

from __future__ import annotations

from datetime import UTC, datetime

# Strict storage format: YYYY-MM-DD HH:MM:SS.ffffff±HHMM
STRICT_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_datetime(dt: datetime) -> str:
    """Format a datetime to the strict storage format, assuming UTC when naive."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.strftime(STRICT_FORMAT)


def now_formatted() -> str:
    return format_datetime(now_utc())
