# backend/vetfinder/services/slots/calculator.py
"""
Slot generator.

Walks a day's opening window in fixed steps of the requested duration and
yields candidate TimeSlots. A candidate is valid only if it ends at or
before closing time (half-open [start, start + duration) against
[open, close)).

Contains:
✓ opening window of the day
✓ past-slot exclusion (slot start < now → unavailable)

Does NOT contain:
✗ Existing reservations (occupancy pass in availability.py)
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator

from ...errors import ValidationError
from .config import minutes_to_time_str
from .opening_hours import DaySchedule


@dataclass
class TimeSlot:
    date: date
    time: str  # "HH:MM"
    instant: datetime
    end: datetime
    available: bool = True


def validate_duration(duration_minutes, max_minutes: int | None = None) -> int:
    """Zero, negative or non-integer durations are input errors, never an empty result."""
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ValidationError(f"Duration must be a whole number of minutes, got {duration_minutes!r}")
    if duration_minutes <= 0:
        raise ValidationError(f"Duration must be positive, got {duration_minutes}")
    if max_minutes is not None and duration_minutes > max_minutes:
        raise ValidationError(f"Duration cannot exceed {max_minutes} minutes")
    return duration_minutes


def candidate_start_minutes(day_schedule: DaySchedule | None, duration_minutes: int) -> list[int]:
    """Start offsets (minutes since midnight) of every slot that fits the opening window."""
    validate_duration(duration_minutes)
    if day_schedule is None:
        return []

    starts = []
    t = day_schedule.open_minutes
    while t + duration_minutes <= day_schedule.close_minutes:
        starts.append(t)
        t += duration_minutes
    return starts


def generate_day_slots(
    target_date: date,
    day_schedule: DaySchedule | None,
    duration_minutes: int,
    now: datetime,
) -> Iterator[TimeSlot]:
    """
    Candidate slots for ``target_date``.

    Duration is validated eagerly; the slots themselves are produced lazily
    as a one-shot iterator with ``available`` left True except for slots
    that already started.
    """
    starts = candidate_start_minutes(day_schedule, duration_minutes)
    return slots_from_start_minutes(target_date, starts, duration_minutes, now)


def slots_from_start_minutes(
    target_date: date,
    starts: Iterable[int],
    duration_minutes: int,
    now: datetime,
) -> Iterator[TimeSlot]:
    midnight = datetime.combine(target_date, time.min)
    step = timedelta(minutes=duration_minutes)

    for minutes in starts:
        slot_start = midnight + timedelta(minutes=minutes)
        yield TimeSlot(
            date=target_date,
            time=minutes_to_time_str(minutes),
            instant=slot_start,
            end=slot_start + step,
            # A booking cannot be made in the past, whatever the occupancy says
            available=slot_start >= now,
        )
