"""
Service-day and GTFS time helpers, always in local time.

A service day starts at SERVICE_DAY_START_HOUR (03:00 by default) and runs
until just before that hour on the next calendar day, so a trip listed at
25:30:00 belongs to the previous day's service.
"""

from datetime import datetime, timedelta

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def service_day_start(now: datetime, start_hour: int = 3) -> datetime:
    """Start of the service day containing `now`."""
    start_today = now.replace(hour=start_hour, minute=0, second=0, microsecond=0)
    if now < start_today:
        return start_today - timedelta(days=1)
    return start_today


def format_yyyymmdd(dt: datetime) -> str:
    return dt.strftime("%Y%m%d")


def weekday_name(dt: datetime) -> str:
    """GTFS calendar column name for dt's weekday ("monday" … "sunday")."""
    return _WEEKDAYS[dt.weekday()]


def hms_to_seconds(hms: str) -> int:
    """'HH:MM[:SS]' → seconds after midnight; hours may exceed 23.  Returns 0 if unparseable."""
    try:
        parts = hms.strip().split(":")
        h, m = int(parts[0]), int(parts[1])
        s = int(parts[2]) if len(parts) > 2 else 0
        return h * 3600 + m * 60 + s
    except (ValueError, IndexError, AttributeError):
        return 0


def seconds_since_midnight(dt: datetime) -> int:
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def local_midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def format_clock(seconds: int) -> str:
    """Seconds after midnight → 'HH:MM', wrapping past 24h (25:10 → '01:10')."""
    seconds %= 86400
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}"
