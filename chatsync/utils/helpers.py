"""Utility functions for chatsync."""

from datetime import datetime, timezone
from typing import Sequence


def join_names(names: Sequence[str]) -> str:
    """Summarize display names: "", "A", "A and B", or "A and N others"."""
    if not names:
        return ""
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{names[0]} and {len(names) - 1} others"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
