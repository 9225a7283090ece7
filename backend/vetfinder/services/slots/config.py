# backend/vetfinder/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking/slots system.

    Attributes:
        default_range_days: Days shown after start_date when no end_date is given
        max_range_days: Widest start..end window one availability request may span
        default_duration_minutes: Fallback for services / reservations without a duration
        max_duration_minutes: Longest reservation allowed (keeps occupancy lookback bounded)
        cache_ttl_seconds: Redis cache TTL for the candidate grid
    """
    default_range_days: int = 30
    max_range_days: int = 90
    default_duration_minutes: int = 30
    max_duration_minutes: int = MINUTES_PER_DAY
    cache_ttl_seconds: int = 86400  # 24 hours

    def __post_init__(self):
        """Validate configuration."""
        if self.default_duration_minutes <= 0:
            raise ValueError(f"default_duration_minutes must be positive, got {self.default_duration_minutes}")
        if self.default_range_days > self.max_range_days:
            raise ValueError("default_range_days cannot exceed max_range_days")


@lru_cache
def get_booking_config() -> BookingConfig:
    """
    Get booking configuration (singleton).

    In the future, this can read from environment or database.
    """
    return BookingConfig()


def time_str_to_minutes(value: str) -> int:
    """
    "HH:MM" → minutes since midnight. "24:00" is accepted as end of day.

    Raises ValueError on anything else; callers translate it into their own
    error type.
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Malformed time {value!r}, expected HH:MM")

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour == 24 and minute == 0:
        return MINUTES_PER_DAY
    if hour > 23 or minute > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return hour * 60 + minute


def minutes_to_time_str(minutes: int) -> str:
    """Minutes since midnight → "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
