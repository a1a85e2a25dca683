"""Wall-clock helpers — single source of truth for 'now'.

Workflow timestamps, transcript entries and log lines all read the time from
here, so tests can freeze it by patching one function.
"""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def hms() -> str:
    """Short time-of-day stamp for log lines: '14:03:27'"""
    return now_utc().strftime("%H:%M:%S")


def ago(moment: datetime) -> str:
    """Coarse age of *moment* for listings: '42s ago', '5m ago', '3h ago', '2d ago'."""
    seconds = max(0, int((now_utc() - moment).total_seconds()))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"
