# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone utilities - everything the sync core stores is UTC
"""
from datetime import datetime, timedelta
import pytz
from typing import Optional


def utc_now() -> datetime:
    """Get current time in UTC"""
    return datetime.now(pytz.UTC)


def now_ms() -> int:
    """Current time as epoch milliseconds (the unit used in channel records)"""
    return int(utc_now().timestamp() * 1000)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def to_rfc3339(dt: datetime) -> str:
    """Format a datetime the way the Calendar API expects (2025-01-01T00:00:00.000Z)"""
    dt = ensure_utc(dt)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def horizon_from_now(days: int) -> str:
    """RFC3339 upper bound `days` into the future, used as a channel's timeMax"""
    return to_rfc3339(utc_now() + timedelta(days=days))
