# backend/vetfinder/schemas/slots.py
"""
Pydantic schemas for availability API.
"""

from datetime import date, datetime
from pydantic import BaseModel


class TimeSlotRead(BaseModel):
    """A single candidate start time."""
    date: date
    time: str  # "HH:MM"
    instant: datetime
    end: datetime
    available: bool

    model_config = {"from_attributes": True}


class OpeningHoursRead(BaseModel):
    open: str
    close: str

    model_config = {"from_attributes": True}


class DayAvailabilityRead(BaseModel):
    """Availability of one calendar day."""
    date: date
    day_of_week: str
    is_open: bool
    opening_hours: OpeningHoursRead | None = None
    slots: list[TimeSlotRead] = []

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    """Per-day slots for a provider and a duration."""
    provider_id: int
    duration_minutes: int
    service_ids: list[int] = []
    start_date: date
    end_date: date
    days: list[DayAvailabilityRead]

    model_config = {"from_attributes": True}


class SlotsInvalidateResponse(BaseModel):
    provider_id: int
    deleted_keys: int
    dates: list[date] | str
