"""Date and time helpers.

Lessons are scheduled by staff as a calendar date plus an ``HH:MM``
time-of-day in the platform timezone; everything stored or compared is
timezone-aware UTC.
"""

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string.

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    hours, _, minutes = value.strip().partition(":")
    if not hours.isdigit() or not minutes.isdigit():
        msg = f"Invalid time of day: {value!r}"
        raise ValueError(msg)
    return time(int(hours), int(minutes))


def combine_local(day: date | datetime, time_of_day: str | None, tz_name: str) -> datetime:
    """Combine a calendar date and an optional ``HH:MM`` into a UTC instant.

    Without a time of day the date's own time is kept (midnight for a
    plain ``date``).
    """
    tz = ZoneInfo(tz_name)
    if isinstance(day, datetime):
        local = day.astimezone(tz) if day.tzinfo else day.replace(tzinfo=tz)
        base_date, base_time = local.date(), local.time()
    else:
        base_date, base_time = day, time(0, 0)
    if time_of_day:
        base_time = parse_time_of_day(time_of_day)
    return datetime.combine(base_date, base_time, tzinfo=tz).astimezone(UTC)


def format_local_time(instant: datetime, tz_name: str) -> str:
    """Render an instant as ``HH:MM`` in the given timezone."""
    return instant.astimezone(ZoneInfo(tz_name)).strftime("%H:%M")
