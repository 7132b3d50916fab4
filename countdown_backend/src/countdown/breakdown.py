from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Dict, Union

# Signed span in seconds (fractional allowed) or a timedelta
DurationInput = Union[int, float, timedelta]

_US_PER_MS = 1_000
_US_PER_SECOND = 1_000_000
_SECONDS_PER_MINUTE = 60
_SECONDS_PER_HOUR = 3_600
_SECONDS_PER_DAY = 86_400


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TimeBreakdown:
    """
    A duration split into calendar-free time units.

    Fields:
    - days: whole days, unbounded
    - hours: 0..23
    - minutes: 0..59
    - seconds: 0..59
    - milliseconds: 0..999
    """

    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    milliseconds: int = 0

    @classmethod
    def zero(cls) -> "TimeBreakdown":
        return cls()

    @property
    def is_zero(self) -> bool:
        return self == TimeBreakdown.zero()

    @property
    def total_milliseconds(self) -> int:
        total_seconds = (
            self.days * _SECONDS_PER_DAY
            + self.hours * _SECONDS_PER_HOUR
            + self.minutes * _SECONDS_PER_MINUTE
            + self.seconds
        )
        return total_seconds * 1000 + self.milliseconds

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def _to_microseconds(duration: DurationInput) -> int:
    if isinstance(duration, timedelta):
        return duration // timedelta(microseconds=1)
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise TypeError(f"duration must be seconds or a timedelta, got {type(duration).__name__}")
    if isinstance(duration, float) and not math.isfinite(duration):
        raise ValueError(f"duration must be finite, got {duration!r}")
    # Round once to whole microseconds; everything after is integer arithmetic
    return round(duration * _US_PER_SECOND)


# PUBLIC_INTERFACE
def decompose(duration: DurationInput) -> TimeBreakdown:
    """
    Split a signed duration into days, hours, minutes, seconds and milliseconds.

    Zero and negative durations map to the all-zero breakdown; fields are never
    negative. Milliseconds are floored, so 0.9999s gives 999ms rather than 1s.

    Args:
        duration: seconds as int/float, or a datetime.timedelta.

    Returns:
        TimeBreakdown for the clamped duration.

    Raises:
        TypeError: for anything but a number or timedelta.
        ValueError: for NaN or infinite seconds.
    """
    total_us = _to_microseconds(duration)
    if total_us <= 0:
        return TimeBreakdown.zero()

    whole_seconds, fraction_us = divmod(total_us, _US_PER_SECOND)
    days, rest = divmod(whole_seconds, _SECONDS_PER_DAY)
    hours, rest = divmod(rest, _SECONDS_PER_HOUR)
    minutes, seconds = divmod(rest, _SECONDS_PER_MINUTE)

    return TimeBreakdown(
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        milliseconds=fraction_us // _US_PER_MS,
    )
