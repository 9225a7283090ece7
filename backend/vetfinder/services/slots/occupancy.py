# backend/vetfinder/services/slots/occupancy.py
"""
Occupancy resolver.

Turns a provider's active reservations (pending / confirmed, not deleted)
into [start, end) intervals. Read-only: never mutates anything.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session, joinedload

from ...models import Reservations
from ..lifecycle import ACTIVE_STATUSES
from .config import BookingConfig, get_booking_config


@dataclass(frozen=True)
class OccupiedInterval:
    start: datetime
    end: datetime
    reservation_id: int | None = None


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open intersection: touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


def effective_duration(reservation: Reservations, config: BookingConfig | None = None) -> int:
    """total_duration_minutes → primary service duration → default."""
    config = config or get_booking_config()
    if reservation.total_duration_minutes:
        return reservation.total_duration_minutes
    service = reservation.primary_service
    if service is not None and service.duration_minutes:
        return service.duration_minutes
    return config.default_duration_minutes


def get_occupied_intervals(
    db: Session,
    provider_id: int,
    target_date: date,
    config: BookingConfig | None = None,
) -> list[OccupiedInterval]:
    """Intervals of active reservations touching ``target_date`` (including ones begun the day before)."""
    day_start = datetime.combine(target_date, time.min)
    return find_overlapping(db, provider_id, day_start, day_start + timedelta(days=1), config=config)


def find_overlapping(
    db: Session,
    provider_id: int,
    start: datetime,
    end: datetime,
    exclude_reservation_id: int | None = None,
    config: BookingConfig | None = None,
) -> list[OccupiedInterval]:
    """
    Active intervals intersecting [start, end).

    Looks back one maximum duration so a reservation begun the previous
    day that runs past midnight is still seen.
    """
    config = config or get_booking_config()
    lookback = start - timedelta(minutes=config.max_duration_minutes)
    reservations = _active_reservations_between(db, provider_id, lookback, end)

    result = []
    for reservation in reservations:
        if exclude_reservation_id is not None and reservation.id == exclude_reservation_id:
            continue
        interval = _to_interval(reservation, config)
        if intervals_overlap(start, end, interval.start, interval.end):
            result.append(interval)
    return result


# ── Helpers ──────────────────────────────────────────────────────────────


def _to_interval(reservation: Reservations, config: BookingConfig | None) -> OccupiedInterval:
    duration = effective_duration(reservation, config)
    return OccupiedInterval(
        start=reservation.instant,
        end=reservation.instant + timedelta(minutes=duration),
        reservation_id=reservation.id,
    )


def _active_reservations_between(
    db: Session,
    provider_id: int,
    start: datetime,
    end: datetime,
) -> list[Reservations]:
    return (
        db.query(Reservations)
        .options(joinedload(Reservations.primary_service))
        .filter(
            Reservations.provider_id == provider_id,
            Reservations.status.in_(ACTIVE_STATUSES),
            Reservations.deleted.is_(False),
            Reservations.instant >= start,
            Reservations.instant < end,
        )
        .order_by(Reservations.instant)
        .all()
    )
