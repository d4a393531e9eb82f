"""
Envelope time tag (pure).

Two 32-bit fields:
- field0: seconds elapsed since Jan 1 00:00:00 UTC of the current year
- field1: sub-second part, milliseconds (time code 0) or
  microseconds (time code 3)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone

from spec import SUPPORTED_TIME_CODES, TIME_CODE_US


@dataclass(frozen=True)
class TimeTag:
    seconds_of_year: int
    sub_second: int


def sub_second_divisor(time_code: int) -> int:
    """
    Nanoseconds per sub-second unit for a time code.

    Raises:
        ValueError for unsupported time codes.
    """
    if time_code not in SUPPORTED_TIME_CODES:
        raise ValueError(f"unsupported time code {time_code}")
    return 1_000 if time_code == TIME_CODE_US else 1_000_000


def make_time_tag(time_code: int, now_ns: int | None = None) -> TimeTag:
    """
    Compute the time tag for `now_ns` (epoch nanoseconds, default: now).
    """
    divisor = sub_second_divisor(time_code)
    if now_ns is None:
        now_ns = time.time_ns()

    seconds, nanos = divmod(now_ns, 1_000_000_000)
    now = datetime.fromtimestamp(seconds, tz=timezone.utc)
    day_of_year = now.timetuple().tm_yday

    field0 = (((day_of_year - 1) * 24 + now.hour) * 60 + now.minute) * 60 + now.second
    return TimeTag(seconds_of_year=field0, sub_second=nanos // divisor)
