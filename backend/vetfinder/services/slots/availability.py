# backend/vetfinder/services/slots/availability.py
"""
Availability service.

For each date of [start_date, end_date]:
- opening window from the provider's weekly schedule
- candidate slots from the generator (Level 1, cached in Redis when available)
- occupied intervals of active reservations (always read live)
- a slot overlapping any occupied interval becomes unavailable

Two request shapes funnel through the same path: keyed by catalog
service(s) (duration summed from the catalog) or keyed by a raw duration
(provider-side manual blocking).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ...errors import ValidationError
from ...models import CompanyServices
from .. import catalog
from .calculator import TimeSlot, candidate_start_minutes, slots_from_start_minutes, validate_duration
from .config import BookingConfig, get_booking_config
from .invalidator import dates_between
from .occupancy import OccupiedInterval, get_occupied_intervals, intervals_overlap
from .opening_hours import DaySchedule, WeeklySchedule, day_name, get_day_schedule
from .redis_store import SlotsRedisStore

logger = logging.getLogger(__name__)


@dataclass
class DayAvailability:
    date: date
    day_of_week: str
    is_open: bool
    opening_hours: DaySchedule | None = None
    slots: list[TimeSlot] = field(default_factory=list)


@dataclass
class AvailabilityResult:
    provider_id: int
    duration_minutes: int
    start_date: date
    end_date: date
    days: list[DayAvailability]
    service_ids: list[int] = field(default_factory=list)


# ── Public entry points ──────────────────────────────────────────────────


def calculate_service_availability(
    db: Session,
    provider_id: int,
    service_id: int,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    additional_service_ids: list[int] | None = None,
    config: BookingConfig | None = None,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> AvailabilityResult:
    """Availability keyed by one or more catalog services (durations are summed)."""
    config = config or get_booking_config()
    start, end = resolve_date_range(start_date, end_date, config, now)

    schedule = catalog.get_provider_schedule(db, provider_id)
    service_ids = [service_id, *(additional_service_ids or [])]
    services = [catalog.get_service(db, service_id), *catalog.get_services(db, additional_service_ids or [])]
    for service in services:
        if service.company_id != provider_id:
            raise ValidationError(f"Service {service.id} is not offered by provider {provider_id}")

    duration = duration_for_services(services, config)
    days = build_days(db, provider_id, schedule, duration, start, end, config, redis, now)
    return AvailabilityResult(
        provider_id=provider_id,
        duration_minutes=duration,
        start_date=start,
        end_date=end,
        days=days,
        service_ids=service_ids,
    )


def calculate_duration_availability(
    db: Session,
    provider_id: int,
    duration_minutes: int,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    config: BookingConfig | None = None,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> AvailabilityResult:
    """Availability keyed by a raw duration (manual-block path)."""
    config = config or get_booking_config()
    duration = validate_duration(duration_minutes, config.max_duration_minutes)
    start, end = resolve_date_range(start_date, end_date, config, now)

    schedule = catalog.get_provider_schedule(db, provider_id)
    days = build_days(db, provider_id, schedule, duration, start, end, config, redis, now)
    return AvailabilityResult(
        provider_id=provider_id,
        duration_minutes=duration,
        start_date=start,
        end_date=end,
        days=days,
    )


def duration_for_services(services: list[CompanyServices], config: BookingConfig | None = None) -> int:
    """Sum of catalog durations; a service without one counts as the default."""
    config = config or get_booking_config()
    return sum(s.duration_minutes or config.default_duration_minutes for s in services)


# ── Date range ───────────────────────────────────────────────────────────


def parse_date(value: str | date | None, field_name: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (ValueError, AttributeError):
        raise ValidationError(f"Invalid {field_name} {value!r}. Use YYYY-MM-DD") from None


def resolve_date_range(
    start_date: str | date | None,
    end_date: str | date | None,
    config: BookingConfig,
    now: datetime | None = None,
) -> tuple[date, date]:
    """
    Validate and complete the requested window.

    start defaults to today, end to start + default_range_days.
    """
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")

    if start is None:
        start = (now or datetime.now()).date()
    if end is None:
        end = start + timedelta(days=config.default_range_days)

    if end < start:
        raise ValidationError("endDate cannot be before startDate")
    if (end - start).days > config.max_range_days:
        raise ValidationError(f"Date range cannot exceed {config.max_range_days} days")

    return start, end


# ── Per-day assembly ─────────────────────────────────────────────────────


def build_days(
    db: Session,
    provider_id: int,
    schedule: WeeklySchedule,
    duration_minutes: int,
    start: date,
    end: date,
    config: BookingConfig,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> list[DayAvailability]:
    now = now or datetime.now()
    days = []

    for target_date in dates_between(start, end):
        day_schedule = get_day_schedule(schedule, target_date)
        if day_schedule is None:
            days.append(DayAvailability(
                date=target_date,
                day_of_week=day_name(target_date),
                is_open=False,
            ))
            continue

        starts = _get_day_starts(
            provider_id, target_date, day_schedule, duration_minutes, config, redis
        )
        candidates = slots_from_start_minutes(target_date, starts, duration_minutes, now)
        occupied = get_occupied_intervals(db, provider_id, target_date, config)

        days.append(DayAvailability(
            date=target_date,
            day_of_week=day_name(target_date),
            is_open=True,
            opening_hours=day_schedule,
            slots=apply_occupancy(candidates, occupied),
        ))

    return days


def apply_occupancy(slots, occupied: list[OccupiedInterval]) -> list[TimeSlot]:
    """Mark every still-available slot that intersects an occupied interval."""
    result = []
    for slot in slots:
        if slot.available:
            for interval in occupied:
                if intervals_overlap(slot.instant, slot.end, interval.start, interval.end):
                    slot.available = False
                    break
        result.append(slot)
    return result


# ── Candidate grid (Level 1 with cache) ─────────────────────────────────


def _get_day_starts(
    provider_id: int,
    target_date: date,
    day_schedule: DaySchedule,
    duration_minutes: int,
    config: BookingConfig,
    redis: Redis | None,
) -> list[int]:
    """Slot starts of a day, using Redis cache when available."""
    if redis is not None:
        store = SlotsRedisStore(redis, config)
        try:
            cached = store.get_day_grid(provider_id, duration_minutes, target_date)
            if cached is not None:
                return cached

            # Cache miss: calculate and store
            starts = candidate_start_minutes(day_schedule, duration_minutes)
            store.store_day_grid(provider_id, duration_minutes, target_date, starts)
            return starts
        except RedisError as e:
            logger.warning(f"Slot cache unavailable, calculating on the fly: {e}")

    # No Redis: calculate on the fly
    return candidate_start_minutes(day_schedule, duration_minutes)
