# backend/vetfinder/services/slots/__init__.py
"""
Slots calculation module.

Level 1: Candidate grid from opening hours (cached in Redis Sorted Sets)
Level 2: Occupancy of active reservations (calculated on-the-fly)
"""

from .config import BookingConfig, get_booking_config
from .calculator import TimeSlot, generate_day_slots
from .redis_store import SlotsRedisStore
from .invalidator import invalidate_provider_cache
from .availability import (
    AvailabilityResult,
    DayAvailability,
    calculate_duration_availability,
    calculate_service_availability,
)

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "TimeSlot",
    "generate_day_slots",
    "SlotsRedisStore",
    "invalidate_provider_cache",
    "AvailabilityResult",
    "DayAvailability",
    "calculate_duration_availability",
    "calculate_service_availability",
]
