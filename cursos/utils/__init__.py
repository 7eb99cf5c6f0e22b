"""Utility modules for the Cursos service."""

from cursos.utils.timezones import (
    combine_local,
    ensure_utc_aware,
    format_local_time,
    parse_time_of_day,
    utc_now,
)


__all__ = [
    "combine_local",
    "ensure_utc_aware",
    "format_local_time",
    "parse_time_of_day",
    "utc_now",
]
