"""
Time helpers.

All "local" dates and hours in this service are China Standard Time (UTC+8),
the broadcast zone of the tracked leagues.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

CST = timezone(timedelta(hours=8))


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def ms_to_cst(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).astimezone(CST)


def cst_date_of(ts_ms: int) -> date:
    return ms_to_cst(ts_ms).date()


def parse_match_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an upstream ``DateTime UTC`` value ("2025-04-01 09:00:00").

    Returns an aware UTC datetime, or None when the value is missing or
    unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace(" ", "T")
    if text.endswith("Z"):
        text = text[:-1]
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_cst_short(ts_ms: int) -> str:
    """Log timestamp, e.g. ``04-01 17:00:05``."""
    return ms_to_cst(ts_ms).strftime("%m-%d %H:%M:%S")
