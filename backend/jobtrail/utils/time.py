"""Time helpers shared by the lockout engine and the HTTP layer."""

import math
from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes.

    SQLite hands back naive values for timezone-aware columns; every
    timestamp written by this app is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def format_time_remaining(remaining: timedelta) -> str:
    """
    Render a remaining duration the way users see it in lockout messages.

    Rounds up to whole minutes: "12m" below an hour, "1h 5m" above.
    """
    minutes = max(0, math.ceil(remaining.total_seconds() / 60))
    if minutes > 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes}m"
