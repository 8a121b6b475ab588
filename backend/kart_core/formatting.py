from __future__ import annotations

import datetime as dt
import math

STORED_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Fixed English names so output does not depend on the process locale.
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_duration(seconds: float, precision: int = 2) -> str:
    """Render a duration as ``MM:SS.cc`` (precision 2) or ``MM:SS.mmm`` (precision 3).

    Values are rounded to the requested number of fractional digits, so
    30.9 renders as ``00:30.90`` rather than losing a hundredth to float
    representation.
    """

    if precision not in (2, 3):
        raise ValueError("precision must be 2 (hundredths) or 3 (milliseconds)")
    if not math.isfinite(seconds):
        raise ValueError("duration must be a finite number")
    if seconds < 0:
        raise ValueError("duration cannot be negative")

    scale = 10 ** precision
    total = int(round(seconds * scale))
    whole, fraction = divmod(total, scale)
    minutes, secs = divmod(whole, 60)
    return f"{minutes:02d}:{secs:02d}.{fraction:0{precision}d}"


def format_created_at(value: str, with_year: bool = False) -> str:
    """Format a stored ``YYYY-MM-DD HH:MM:SS`` timestamp for history lists.

    Anything that does not parse is returned untouched.
    """

    try:
        stamp = dt.datetime.strptime(value, STORED_TIMESTAMP_FORMAT)
    except (TypeError, ValueError):
        return value

    hour = stamp.hour % 12 or 12
    meridiem = "AM" if stamp.hour < 12 else "PM"
    day = f"{_MONTHS[stamp.month - 1]} {stamp.day}"
    if with_year:
        day = f"{day}, {stamp.year}"
    else:
        day = f"{day},"
    return f"{day} {hour}:{stamp.minute:02d} {meridiem}"
