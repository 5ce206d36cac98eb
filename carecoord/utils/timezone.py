from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from carecoord.core.config import settings


def get_zoneinfo(tz_name: Optional[str] = None) -> ZoneInfo:
    """
    Resolve an IANA zone name, falling back to settings.DEFAULT_TIMEZONE.
    Raises ZoneInfoNotFoundError for unknown names.
    """
    return ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)


def is_valid_timezone(tz_name: str) -> bool:
    if not isinstance(tz_name, str):
        return False
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def utc_now() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC).
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)

