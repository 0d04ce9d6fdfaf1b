"""
Fleet Trip Integrity - Timezone Utilities
Provides UTC storage helpers and reporting-day boundaries.

Timestamps are stored as naive UTC datetimes. "Today" for audit statistics is
the calendar day in REPORTING_TIMEZONE (the fleet's operating timezone), so an
entry written at 01:00 local time counts toward the local day even when UTC is
still on the previous date.
"""

from datetime import datetime, date, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from utils.config import REPORTING_TIMEZONE

UTC_TZ = ZoneInfo('UTC')
REPORTING_TZ = ZoneInfo(REPORTING_TIMEZONE)


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to naive UTC.

    Aware datetimes are converted; naive ones are assumed to already be UTC.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (date or datetime, 'Z' suffix allowed).

    Raises:
        ValueError: If the string is not a valid ISO date/datetime
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return to_naive_utc(datetime.fromisoformat(text))


def get_today_reporting(now: Optional[datetime] = None) -> date:
    """Current calendar date in the reporting timezone."""
    now_utc = now or utc_now()
    return now_utc.replace(tzinfo=UTC_TZ).astimezone(REPORTING_TZ).date()


def get_reporting_day_start_utc(target_date: date) -> datetime:
    """Midnight of target_date in the reporting timezone, as naive UTC."""
    start_local = datetime(target_date.year, target_date.month, target_date.day, tzinfo=REPORTING_TZ)
    return to_naive_utc(start_local)


def get_today_start_utc(now: Optional[datetime] = None) -> datetime:
    """Start of the current reporting day, as naive UTC."""
    return get_reporting_day_start_utc(get_today_reporting(now))


def get_week_start_utc(now: Optional[datetime] = None) -> datetime:
    """Rolling 7-day window start, as naive UTC."""
    return (now or utc_now()) - timedelta(days=7)


def get_days_ago_utc(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) - timedelta(days=days)


def date_to_reporting(utc_datetime: datetime) -> date:
    """Reporting-timezone calendar date of a naive UTC timestamp."""
    return utc_datetime.replace(tzinfo=UTC_TZ).astimezone(REPORTING_TZ).date()
