"""
Interval Model

Pure arithmetic over half-open booking intervals ``[start, end)``. Nothing in
here touches storage, so the same functions back the non-authoritative
preflight endpoint and the transactional conflict guard.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class BookingInterval:
    start_at_utc: datetime
    end_at_utc: datetime

    def overlaps(self, other: "BookingInterval") -> bool:
        return overlaps(self.start_at_utc, self.end_at_utc, other.start_at_utc, other.end_at_utc)


def validate_duration(duration_minutes: int) -> int:
    """Reject negative durations before they reach ``compute_end``."""
    if duration_minutes < 0:
        raise ValueError(f"Service duration cannot be negative: {duration_minutes}")
    return duration_minutes


def compute_end(start: datetime, duration_minutes: int) -> datetime:
    """End of a booking that starts at ``start`` and lasts ``duration_minutes``.

    Zero returns ``start`` unchanged. The duration is not validated here.
    """
    return start + timedelta(minutes=duration_minutes)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    # Back-to-back intervals (end_a == start_b) do not overlap.
    # A zero-length interval at exactly start_b does not overlap either.
    return start_a < end_b and start_b < end_a
