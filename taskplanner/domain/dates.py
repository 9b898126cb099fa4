"""Calendar-date and timestamp helpers.

Due dates and rule end dates are calendar dates in the user's local timezone
and travel as ``YYYY-MM-DD`` strings. Planned times and audit fields are
aware timestamps compared on the UTC timeline. Every conversion between the
two goes through this module so that "today" always means the local day.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

_DATE_ONLY = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_ISO_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})[T ]")
_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def local_now() -> datetime:
    return datetime.now().astimezone()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(value: datetime) -> datetime:
    """Aware local datetime; naive values are read as local wall time."""
    return value.astimezone()


def to_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def format_date_only_local(value: datetime | date) -> str:
    if isinstance(value, datetime):
        return to_local(value).date().isoformat()
    return value.isoformat()


def parse_date_only(value: str) -> date:
    match = _DATE_ONLY.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Expected YYYY-MM-DD, got {value!r}")
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def parse_date_only_local(value: str) -> datetime:
    """Local midnight of a ``YYYY-MM-DD`` date."""
    return datetime.combine(parse_date_only(value), time.min).astimezone()


def end_of_day_local_from_date_only(value: str) -> datetime:
    return datetime.combine(parse_date_only(value), time.max).astimezone()


def coerce_date_only(value: object) -> str | None:
    """Normalize a date-like value to ``YYYY-MM-DD`` or return None.

    Accepts ``date``/``datetime`` objects, ``YYYY-M-D`` strings and ISO
    timestamp strings (the calendar date is taken as written).
    """
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return format_date_only_local(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    match = _DATE_ONLY.match(text) or _ISO_DATE_PREFIX.match(text)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def get_today_date_only_local(now: datetime | None = None) -> str:
    return format_date_only_local(now or local_now())


def parse_timestamp(value: str | datetime) -> datetime:
    """Aware UTC datetime from an ISO-8601 string; naive input is taken as UTC."""
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return to_utc(parsed)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_time_of_day(value: str) -> time:
    match = _TIME_OF_DAY.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def at_local_time(day: date, moment: time) -> datetime:
    return datetime.combine(day, moment).astimezone()


def add_months(base: date, months: int) -> date:
    """Same day-of-month ``months`` later; days past the month end roll over."""
    year = base.year + (base.month - 1 + months) // 12
    month = (base.month - 1 + months) % 12 + 1
    return date(year, month, 1) + timedelta(days=base.day - 1)


def add_years(base: date, years: int) -> date:
    return add_months(base, years * 12)
