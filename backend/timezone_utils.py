"""
Timezone utilities for business-day handling.

Timestamps are stored as naive UTC. Daily metrics are bucketed by the cafe's
local calendar day, so an order placed at 00:30 local time counts toward that
local day even though its UTC timestamp falls on the previous date.
"""
from datetime import datetime, date, timedelta
from typing import Optional
import pytz

from config import settings


def get_business_timezone(tz_name: Optional[str] = None):
    """
    Get pytz timezone object for the business.

    Falls back to UTC for unknown names.
    """
    try:
        return pytz.timezone(tz_name or settings.APP_TIMEZONE)
    except pytz.exceptions.UnknownTimeZoneError:
        return pytz.UTC


def get_business_today(tz_name: Optional[str] = None) -> date:
    """Current date in the business timezone"""
    tz = get_business_timezone(tz_name)
    utc_now = datetime.utcnow().replace(tzinfo=pytz.UTC)
    return utc_now.astimezone(tz).date()


def utc_to_business_date(utc_dt: datetime, tz_name: Optional[str] = None) -> date:
    """Local calendar date of a naive UTC timestamp"""
    tz = get_business_timezone(tz_name)
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=pytz.UTC)
    return utc_dt.astimezone(tz).date()


def business_day_bounds(day: date, tz_name: Optional[str] = None) -> tuple[datetime, datetime]:
    """
    Naive UTC [start, end) covering one local calendar day.

    Example:
        For Asia/Kolkata (UTC+5:30), 2024-03-10 maps to
        2024-03-09 18:30 UTC .. 2024-03-10 18:30 UTC
    """
    tz = get_business_timezone(tz_name)
    local_start = tz.localize(datetime.combine(day, datetime.min.time()))
    local_end = tz.localize(datetime.combine(day + timedelta(days=1), datetime.min.time()))
    return (
        local_start.astimezone(pytz.UTC).replace(tzinfo=None),
        local_end.astimezone(pytz.UTC).replace(tzinfo=None),
    )


def month_start(day: date) -> date:
    return day.replace(day=1)
