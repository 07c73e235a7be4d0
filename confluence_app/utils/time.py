"""
Session time utilities.

Bar timestamps are authoritative: every time-of-day rule (force exit,
session halves, expiry) is evaluated against the timestamp of the bar being
processed, converted to the exchange's local time zone. Wall-clock time is
never consulted by the decision core.

Naive datetimes are interpreted as already being exchange-local.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/New_York"


def to_session_time(ts: datetime, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Convert a timestamp to exchange-local time."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=ZoneInfo(tz_name))
    return ts.astimezone(ZoneInfo(tz_name))


def session_date(ts: datetime, tz_name: str = DEFAULT_TIMEZONE) -> date:
    """Calendar date of the trading session a timestamp belongs to."""
    return to_session_time(ts, tz_name).date()


def hour_of_day(ts: datetime, tz_name: str = DEFAULT_TIMEZONE) -> float:
    """
    Exchange-local time of day as decimal hours.

    15:30 is returned as 15.5, matching how force-exit and session
    boundaries are configured.
    """
    local = to_session_time(ts, tz_name)
    return local.hour + local.minute / 60.0 + local.second / 3600.0


def minutes_between(start: datetime, end: datetime) -> float:
    """Minutes elapsed from start to end (negative if end precedes start)."""
    return (end - start).total_seconds() / 60.0


def at_session_hour(ts: datetime, hour: float, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Timestamp on the same session date as ts at the given decimal hour.

    Used to derive same-day expiry times for 0DTE contracts.
    """
    local = to_session_time(ts, tz_name)
    whole_hours = int(hour)
    minutes = int(round((hour - whole_hours) * 60))
    base = datetime.combine(local.date(), time(0, 0), tzinfo=local.tzinfo)
    return base + timedelta(hours=whole_hours, minutes=minutes)


def session_midpoint(session_open: float, session_close: float) -> float:
    """Decimal hour splitting the session into its front and back halves."""
    return (session_open + session_close) / 2.0


def format_session_time(ts: Optional[datetime], tz_name: str = DEFAULT_TIMEZONE) -> str:
    """Format a timestamp as exchange-local ISO string for logs and events."""
    if ts is None:
        return ""
    return to_session_time(ts, tz_name).isoformat()
