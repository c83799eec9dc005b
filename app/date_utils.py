"""
Date utilities: natural language due-date parsing, calendar arithmetic for
recurrence, and timezone-aware "today" for date-only comparisons.
"""
import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dateparser

from app.logger import get_logger

logger = get_logger(__name__)


# Day of week patterns
WEEKDAY_NAMES = {
    'monday': 0, 'mon': 0,
    'tuesday': 1, 'tue': 1, 'tues': 1,
    'wednesday': 2, 'wed': 2,
    'thursday': 3, 'thu': 3, 'thur': 3, 'thurs': 3,
    'friday': 4, 'fri': 4,
    'saturday': 5, 'sat': 5,
    'sunday': 6, 'sun': 6
}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_today(tz_name: Optional[str] = None) -> date:
    """
    Today's date in the given IANA timezone (UTC when unknown).
    """
    if tz_name:
        try:
            return datetime.now(ZoneInfo(tz_name)).date()
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{tz_name}', falling back to UTC")
    return datetime.now(timezone.utc).date()


def add_months(d: date, months: int = 1) -> date:
    """
    Add calendar months, clamping the day to the last day of the target month.
    Jan 31 + 1 month is Feb 28 (or 29).
    """
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def _get_end_of_week(today: date) -> date:
    """Get the date of the coming Sunday."""
    days_until_sunday = (6 - today.weekday()) % 7
    if days_until_sunday == 0:
        days_until_sunday = 7  # If today is Sunday, get next Sunday
    return today + timedelta(days=days_until_sunday)


def _get_end_of_month(today: date) -> date:
    """Get the last day of the current month."""
    return date(today.year, today.month, calendar.monthrange(today.year, today.month)[1])


def _get_next_weekday(today: date, weekday: int) -> date:
    """Get the next occurrence of a specific weekday (0=Monday, 6=Sunday)."""
    days_ahead = weekday - today.weekday()
    if days_ahead <= 0:  # Target day already happened this week
        days_ahead += 7
    return today + timedelta(days=days_ahead)


def _fallback_parse_date(text: str, today: date) -> Optional[date]:
    """
    Handle the phrases dateparser does not understand.
    """
    text_lower = text.lower().strip()

    if re.match(r'^end\s+of\s+(the\s+)?week$', text_lower):
        return _get_end_of_week(today)
    if re.match(r'^end\s+of\s+(the\s+)?month$', text_lower):
        return _get_end_of_month(today)

    for day_name, weekday in WEEKDAY_NAMES.items():
        if re.search(rf'\b{day_name}\b', text_lower):
            return _get_next_weekday(today, weekday)

    return None


def parse_due_date(text: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Parse a due date from natural language or ISO format.

    Supports:
    - ISO format: 2026-02-22
    - Natural language: tomorrow, Friday, next week, in 3 days, etc.
    - Null/None values

    Args:
        text: Date string to parse
        today: Reference date for relative expressions

    Returns:
        Parsed date object or None if parsing fails
    """
    if not text or str(text).lower() in ['null', 'none', 'n/a', '', 'unspecified']:
        return None

    text = str(text).strip()
    today = today or date.today()

    # Try ISO format first (YYYY-MM-DD)
    if re.match(r'^\d{4}-\d{2}-\d{2}$', text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass

    try:
        parsed = dateparser.parse(
            text,
            settings={
                'PREFER_DATES_FROM': 'future',
                'RELATIVE_BASE': datetime.combine(today, datetime.min.time()),
            }
        )
        if parsed:
            result = parsed.date()
            logger.debug(f"Parsed '{text}' -> {result.isoformat()}")
            return result
    except Exception as e:
        logger.debug(f"dateparser failed for '{text}': {e}")

    fallback_result = _fallback_parse_date(text, today)
    if fallback_result:
        logger.debug(f"Fallback parsed '{text}' -> {fallback_result.isoformat()}")
        return fallback_result

    logger.warning(f"Could not parse date: '{text}'")
    return None


def format_date_iso(d: Optional[date]) -> Optional[str]:
    """
    Format a date to ISO format string.

    Args:
        d: Date object or None

    Returns:
        ISO format string (YYYY-MM-DD) or None
    """
    if d is None:
        return None
    return d.isoformat()


def format_friendly_date(d: Optional[date], today: Optional[date] = None) -> str:
    """Short human date for SMS bodies: Today, Tomorrow or 'Fri, Mar 6'."""
    if d is None:
        return "No due date"
    today = today or date.today()
    if d == today:
        return "Today"
    if d == today + timedelta(days=1):
        return "Tomorrow"
    return f"{d.strftime('%a, %b')} {d.day}"
