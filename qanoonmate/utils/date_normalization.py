"""
Helpers for normalising dates to timezone-aware UTC values.
"""
from datetime import datetime, timezone
from typing import Optional, Union
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from ..exceptions import ValidationError


def normalize_datetime(
    dt: Optional[Union[str, datetime]],
    default_timezone: timezone = timezone.utc
) -> Optional[datetime]:
    """
    Normalise a date/time to a timezone-aware datetime (UTC by default).

    Args:
        dt: string or datetime value
        default_timezone: timezone assumed when the value carries none

    Returns:
        timezone-aware datetime, or None when the value cannot be parsed
    """
    if dt is None:
        return None

    if isinstance(dt, datetime):
        if dt.tzinfo is None:
            return dt.replace(tzinfo=default_timezone)
        return dt.astimezone(default_timezone)

    if isinstance(dt, str):
        try:
            parsed = date_parser.parse(dt)
        except (ValueError, OverflowError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=default_timezone)
        return parsed.astimezone(default_timezone)

    return None


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes (sqlite returns them) and convert aware ones to UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# range name -> how far back from now; "today" starts at midnight UTC
DATE_RANGES = {
    "week": relativedelta(days=7),
    "month": relativedelta(months=1),
    "3months": relativedelta(months=3),
    "6months": relativedelta(months=6),
}
ALL_RANGES = "all"


def date_range_start(range_name: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Lower bound for a named date range filter.

    Args:
        range_name: today, week, month, 3months, 6months or all
        now: reference moment (defaults to the current UTC time)

    Returns:
        start datetime, or None for no range / "all"

    Raises:
        ValidationError: unknown range name
    """
    if not range_name or range_name == ALL_RANGES:
        return None
    now = ensure_utc(now) if now else utcnow()

    if range_name == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if range_name not in DATE_RANGES:
        raise ValidationError(
            f"Unknown date range '{range_name}'",
            {"allowed": ["today", *DATE_RANGES, ALL_RANGES]},
        )
    return now - DATE_RANGES[range_name]
