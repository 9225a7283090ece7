# backend/vetfinder/services/slots/opening_hours.py
"""
Opening-hours calendar.

Pure lookup over a provider's weekly schedule:

    {"monday": {"open": "09:00", "close": "18:00", "closed": false}, ...}

Three-letter keys ("mon", "tue", ...) are accepted too. A day that is
missing, null or ``closed: true`` is a closed day. Malformed times raise
ScheduleFormatError instead of silently defaulting.
"""

import json
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from ...errors import ScheduleFormatError
from .config import minutes_to_time_str, time_str_to_minutes

# Index = date.weekday() (0 = Monday)
DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
SHORT_DAY_NAMES = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


@dataclass(frozen=True)
class DaySchedule:
    """Open window of one day, as minutes since midnight."""
    open_minutes: int
    close_minutes: int

    @property
    def open(self) -> str:
        return minutes_to_time_str(self.open_minutes)

    @property
    def close(self) -> str:
        return minutes_to_time_str(self.close_minutes)


WeeklySchedule = Mapping[str, Any]


def load_weekly_schedule(raw: str | Mapping | None) -> WeeklySchedule:
    """Decode the stored opening_hours value (JSON text or already a mapping)."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return raw
    try:
        schedule = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ScheduleFormatError(f"Opening hours are not valid JSON: {e}") from None
    if schedule is None:
        return {}
    if not isinstance(schedule, dict):
        raise ScheduleFormatError("Opening hours must be an object keyed by weekday")
    return schedule


def day_name(target_date: date) -> str:
    return DAY_NAMES[target_date.weekday()]


def get_day_schedule(schedule: WeeklySchedule, target_date: date) -> DaySchedule | None:
    """
    Opening window for ``target_date``.

    Returns:
        DaySchedule, or None when the provider is closed / has no entry.
    """
    weekday = target_date.weekday()

    day_data = schedule.get(DAY_NAMES[weekday])
    if day_data is None:
        day_data = schedule.get(SHORT_DAY_NAMES[weekday])

    if day_data is None:
        return None
    if not isinstance(day_data, Mapping):
        raise ScheduleFormatError(f"{DAY_NAMES[weekday]}: expected {{open, close, closed}}, got {day_data!r}")
    if day_data.get("closed"):
        return None

    open_str = day_data.get("open")
    close_str = day_data.get("close")
    if not open_str or not close_str:
        raise ScheduleFormatError(f"{DAY_NAMES[weekday]}: open and close are required on an open day")

    try:
        open_min = time_str_to_minutes(open_str)
        close_min = time_str_to_minutes(close_str)
    except ValueError as e:
        raise ScheduleFormatError(f"{DAY_NAMES[weekday]}: {e}") from None

    if close_min <= open_min:
        raise ScheduleFormatError(
            f"{DAY_NAMES[weekday]}: close {close_str} must be after open {open_str}"
        )

    return DaySchedule(open_minutes=open_min, close_minutes=close_min)
