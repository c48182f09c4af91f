"""Clinic calendar rules: time ranges and civil-timezone dates.

Every "today" / "is past" decision is made on the calendar day observed in
the clinic's timezone, never the caller's local clock. Functions take an
optional ``now`` so callers (and tests) can pin the clock.
"""
import re
from datetime import date, datetime, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

from docsmile import config

DateInput = Union[str, date, datetime, None]

TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_time_minutes(value: Optional[str]) -> Optional[int]:
    """
    Parse "HH:MM" into minutes since midnight.

    Returns:
        Minutes since midnight, or None for missing/malformed input
    """
    if not value or not isinstance(value, str):
        return None

    match = TIME_PATTERN.match(value.strip())
    if not match:
        return None

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None

    return hours * 60 + minutes


def validate_time_range(
    start_time: Optional[str],
    end_time: Optional[str],
    min_duration: Optional[int] = None
) -> bool:
    """
    Check that an appointment ends after it starts, by at least min_duration.

    Malformed input is a normal False result, never an exception.

    Args:
        start_time: Start time "HH:MM"
        end_time: End time "HH:MM"
        min_duration: Minimum length in minutes (default: configured 30)

    Returns:
        True if both times parse and end - start >= min_duration

    Example:
        >>> validate_time_range("09:00", "09:29", 30)
        False
        >>> validate_time_range("09:00", "09:30", 30)
        True
    """
    if min_duration is None:
        min_duration = config.MIN_APPOINTMENT_MINUTES

    start = parse_time_minutes(start_time)
    end = parse_time_minutes(end_time)
    if start is None or end is None:
        return False

    return end > start and (end - start) >= min_duration


def get_zone(tz: Union[str, tzinfo, None] = None) -> tzinfo:
    """Resolve a timezone name (default: clinic timezone)."""
    if isinstance(tz, tzinfo):
        return tz
    return ZoneInfo(tz or config.CLINIC_TIMEZONE)


def clinic_now(
    tz: Union[str, tzinfo, None] = None,
    now: Optional[datetime] = None
) -> datetime:
    """
    Current instant expressed in the clinic timezone.

    Args:
        tz: Clinic timezone (default: configured)
        now: Pinned instant; naive values are taken as UTC
    """
    zone = get_zone(tz)
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(zone)


def clinic_today(
    tz: Union[str, tzinfo, None] = None,
    now: Optional[datetime] = None
) -> date:
    """Calendar day in the clinic timezone (minimum date for date inputs)."""
    return clinic_now(tz, now).date()


def to_clinic_date(value: DateInput, tz: Union[str, tzinfo, None] = None) -> Optional[date]:
    """
    Normalize any date input to the calendar day seen in the clinic timezone.

    - "YYYY-MM-DD" strings and date values are already calendar days
    - ISO datetime strings and datetime values are converted to the zone
      (naive datetimes are taken as UTC)

    Raises:
        ValueError: If a string cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return clinic_now(tz, value).date()

    if isinstance(value, date):
        return value

    if not isinstance(value, str):
        raise ValueError(f"Unsupported date value: {value!r}")

    text = value.strip()
    if DATE_ONLY_PATTERN.match(text):
        return date.fromisoformat(text)

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    return clinic_now(tz, parsed).date()


def to_clinic_day(value: DateInput, tz: Union[str, tzinfo, None] = None) -> Optional[str]:
    """Calendar day string (YYYY-MM-DD) in the clinic timezone."""
    day = to_clinic_date(value, tz)
    return day.isoformat() if day else None


def is_past_date(
    value: DateInput,
    now: Optional[datetime] = None,
    tz: Union[str, tzinfo, None] = None
) -> bool:
    """
    True if the date falls on a calendar day before today (clinic timezone).

    Today itself is not in the past. Missing input is not past.
    """
    day = to_clinic_date(value, tz)
    if day is None:
        return False
    return day < clinic_today(tz, now)


def is_valid_birth_date(
    value: DateInput,
    now: Optional[datetime] = None,
    tz: Union[str, tzinfo, None] = None
) -> bool:
    """Birth date is optional; when given it must not be after today."""
    if value is None or value == "":
        return True
    try:
        day = to_clinic_date(value, tz)
    except ValueError:
        return False
    return day <= clinic_today(tz, now)


def calculate_age(
    date_of_birth: DateInput,
    now: Optional[datetime] = None,
    tz: Union[str, tzinfo, None] = None
) -> Optional[int]:
    """
    Age in whole years, counting the birthday anniversary in the clinic zone.

    Example:
        now = 2024-07-25, born 1992-03-22 -> 32
    """
    born = to_clinic_date(date_of_birth, tz)
    if born is None:
        return None

    today = clinic_today(tz, now)
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age
