"""Calendar-day helpers for the daily bar (all "today" rows are keyed by these strings)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Denver"
DATE_KEY_FORMAT = "%Y-%m-%d"


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    """Return the named zone, falling back to UTC when tzdata does not know it."""
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except Exception:
        return timezone.utc


def today_key(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Return today's ``YYYY-MM-DD`` partition key in the fixed timezone, not the host's."""
    tz = resolve_timezone(tz_name)
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).strftime(DATE_KEY_FORMAT)


def next_day_start(date_key: str, tz_name: Optional[str] = None) -> datetime:
    """Return the UTC instant at which ``date_key`` ends in the fixed timezone."""
    tz = resolve_timezone(tz_name)
    day = datetime.strptime(date_key, DATE_KEY_FORMAT)
    local_midnight = (day + timedelta(days=1)).replace(tzinfo=tz)
    return local_midnight.astimezone(timezone.utc)
