"""Game clock: millisecond distance from the nearest whole second."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def offset_from_millis(millis: int) -> int:
    """Fold a millisecond-within-second value into a distance from :000.

    Values below 500 are "just past" the previous second and count as-is;
    500 and above are "approaching" the next one and count as 1000 - m.
    """
    if not 0 <= millis <= 999:
        raise ValueError(f"millisecond value out of range: {millis}")
    if millis < 500:
        return millis
    return 1000 - millis


def sample_offset(now: datetime) -> int:
    """Offset in ms between ``now`` and the nearest whole second."""
    return offset_from_millis(now.microsecond // 1000)


def format_clock(now: datetime) -> str:
    """Render the game clock as HH:MM:SS:mmm."""
    return f"{now:%H:%M:%S}:{now.microsecond // 1000:03d}"


@dataclass(frozen=True)
class ClockReading:
    now: datetime
    millis: int
    offset_ms: int

    @property
    def display(self) -> str:
        return format_clock(self.now)


class ClockSampler:
    """Reads a wall clock and turns the reading into an offset.

    The clock callable is injectable so tests can pin time.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    def sample(self, at: Optional[datetime] = None) -> ClockReading:
        now = at if at is not None else self._clock()
        millis = now.microsecond // 1000
        return ClockReading(now=now, millis=millis, offset_ms=offset_from_millis(millis))
