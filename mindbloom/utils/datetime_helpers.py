"""
Standardized Date/Time Handling Utilities

CRITICAL RULES:
- All stored timestamps are timezone-aware UTC (use now_utc() / to_utc())
- Streaks, check-ins and challenge days are bucketed by calendar day
  (use to_day()); time-of-day never matters for those
- Never mix naive and aware datetimes
"""

import logging
import math
from datetime import datetime, date, timedelta
from typing import Union
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")
ONE_DAY = timedelta(days=1)


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC for storage

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        logger.debug(f"Received naive datetime, assuming UTC: {dt}")
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_day(value: Union[datetime, date]) -> date:
    """
    Normalize a timestamp to its calendar day (UTC), ignoring time-of-day

    Dates pass through unchanged.
    """
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


def ceil_days(start: datetime, end: datetime) -> int:
    """
    Number of started 24h periods between two instants

    Example:
        ceil_days(Jan 1 00:00, Jan 8 00:00) == 7
        ceil_days(Jan 1 00:00, Jan 8 06:00) == 8
    """
    seconds = (to_utc(end) - to_utc(start)).total_seconds()
    return math.ceil(seconds / ONE_DAY.total_seconds())
