"""
Cycle Utilities

A cycle is one calendar month, identified by a month key "YYYY-MM".
Everything the core knows about "this month" goes through here so
there is exactly one definition of the month boundary.
"""

import re
from datetime import datetime, tzinfo
from typing import Callable, Optional


MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")

Clock = Callable[[], datetime]


def month_key(moment: datetime) -> str:
    """Month key of a timestamp, e.g. 2024-03-15 -> "2024-03"."""
    return f"{moment.year:04d}-{moment.month:02d}"


def is_month_key(value: str) -> bool:
    return isinstance(value, str) and MONTH_KEY_PATTERN.match(value) is not None


def parse_month_key(value: str) -> tuple[int, int]:
    """
    Split a month key into (year, month).
    
    Raises:
        ValueError: If the key is not YYYY-MM
    """
    match = MONTH_KEY_PATTERN.match(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Invalid month key: {value!r} (expected YYYY-MM)")
    return int(match.group(1)), int(match.group(2))


def same_cycle(moment: datetime, now: datetime) -> bool:
    """
    True if both timestamps fall in the same calendar month and year.
    
    When both are timezone-aware, moment is first expressed in now's
    timezone so the month boundary is the one the user sees.
    """
    if moment.tzinfo is not None and now.tzinfo is not None:
        moment = moment.astimezone(now.tzinfo)
    return moment.year == now.year and moment.month == now.month


def make_clock(tz: Optional[tzinfo] = None) -> Clock:
    """
    Build a wall-clock reader.
    
    With tz=None the clock returns local naive time.
    """
    def now() -> datetime:
        return datetime.now(tz) if tz is not None else datetime.now()
    return now
