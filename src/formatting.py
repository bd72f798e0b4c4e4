"""Display helpers shared by the monitor report and the provider status panel."""

from datetime import datetime
from typing import Union

BYTE_UNITS = ['B', 'KB', 'MB', 'GB', 'TB']

DURATION_UNITS = [
    ("year", 365 * 86400),
    ("month", 30 * 86400),
    ("week", 7 * 86400),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_bytes(num_bytes: Union[int, float], precision: int = 2) -> str:
    """Format a byte count using 1024-based units, e.g. 1536 -> '1.5 KB'"""
    value = num_bytes
    i = 0
    while value > 1024 and i < len(BYTE_UNITS) - 1:
        value /= 1024
        i += 1

    value = round(value, precision)
    if float(value).is_integer():
        value = int(value)
    return f"{value} {BYTE_UNITS[i]}"


def truncate_url(url: str, max_length: int = 50) -> str:
    if len(url) <= max_length:
        return url
    return url[:max_length - 3] + '...'


def humanize_duration(seconds: float) -> str:
    """Render a duration using its largest whole unit, e.g. 3700 -> '1 hour'"""
    seconds = max(abs(seconds), 1)
    for name, size in DURATION_UNITS:
        if seconds >= size:
            count = int(seconds // size)
            return f"{count} {name}" if count == 1 else f"{count} {name}s"
    return "1 second"


def humanize_relative(target: datetime, now: datetime) -> str:
    delta = (target - now).total_seconds()
    if delta >= 0:
        return f"in {humanize_duration(delta)}"
    return f"{humanize_duration(delta)} ago"


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)
