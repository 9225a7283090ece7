# backend/vetfinder/services/booking.py
"""
Booking transaction.

Creates (and reschedules) reservations inside one atomic unit:

1. Resolve the total duration (catalog services summed, or a raw duration
   for provider manual blocks) and snapshot each service's name / price /
   duration as it is right now.
2. Take the provider's booking lock, then re-check the exact interval
   against every active reservation.
3. Insert the reservation and its snapshot rows, persist the totals.

Validation, not-found and authorization checks all run before the lock.
Any failure after it rolls the whole unit back: no reservation without its
snapshots, no dangling totals.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Union

from redis import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import AuthorizationError, BookingError, InternalError, NotFound, SlotConflict, ValidationError
from ..identity import CallerIdentity
from ..models import Companies, Reservations, ReservationServices, Users
from . import catalog
from .booking_lock import acquire_provider_lock
from .events import emit_reservation_event
from .lifecycle import CANCELLED, CONFIRMED, PENDING, is_terminal, transition
from .reservations import is_provider_owner, is_requester, load_reservation
from .slots.calculator import validate_duration
from .slots.config import BookingConfig, get_booking_config
from .slots.occupancy import find_overlapping
from .slots.opening_hours import get_day_schedule, load_weekly_schedule

logger = logging.getLogger(__name__)

# Legacy wire sentinel: requester_id / service_id of a provider manual block
MANUAL_BLOCK_SENTINEL = -1

_DURATION_MARKER_RE = re.compile(r"DURATION_MINUTES\s*=\s*(-?\d+)")


# ── Request variants ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class RealAccount:
    user_id: int


@dataclass(frozen=True)
class ProviderManualBlock:
    pass


Requester = Union[RealAccount, ProviderManualBlock]


@dataclass(frozen=True)
class ServiceId:
    id: int


@dataclass(frozen=True)
class InlineSnapshot:
    name: str
    duration_minutes: int
    price_min: float | None = None
    price_max: float | None = None


ServiceRef = Union[ServiceId, InlineSnapshot]


@dataclass(frozen=True)
class CatalogSelection:
    refs: tuple[ServiceRef, ...]


@dataclass(frozen=True)
class RawDuration:
    minutes: int


ServiceSelection = Union[CatalogSelection, RawDuration]


@dataclass(frozen=True)
class BookingRequest:
    provider_id: int
    requester: Requester
    selection: ServiceSelection
    instant: datetime
    notes: str | None = None

    @property
    def is_manual_block(self) -> bool:
        return isinstance(self.requester, ProviderManualBlock)


@dataclass(frozen=True)
class _SnapshotDraft:
    service_id: int | None
    name: str
    duration_minutes: int
    price_min: float | None
    price_max: float | None


# ── Wire format → variants ───────────────────────────────────────────────


def parse_duration_marker(notes: str | None, default: int) -> int:
    """
    DURATION_MINUTES=<n> from manual-block notes.

    Absent or unreadable → ``default``; a present but non-positive value is
    an input error.
    """
    if not notes:
        return default
    match = _DURATION_MARKER_RE.search(notes)
    if not match:
        return default
    minutes = int(match.group(1))
    if minutes <= 0:
        raise ValidationError(f"DURATION_MINUTES must be positive, got {minutes}")
    return minutes


def resolve_booking_request(
    caller: CallerIdentity,
    provider_id: int,
    instant: datetime,
    requester_id: int | None = None,
    service_id: int | None = None,
    services: list | None = None,
    notes: str | None = None,
    duration_minutes: int | None = None,
    manual_block: bool = False,
    config: BookingConfig | None = None,
) -> BookingRequest:
    """
    Turn the HTTP payload into a BookingRequest, exactly once.

    ``services`` items may be ints, ``{"id": n}`` mappings or inline
    snapshots ``{"name", "duration_minutes", "price_min", "price_max"}``.
    Role / ownership checks that need the database happen in
    create_reservation.
    """
    config = config or get_booking_config()

    requester_sentinel = requester_id == MANUAL_BLOCK_SENTINEL
    service_sentinel = service_id == MANUAL_BLOCK_SENTINEL

    if requester_sentinel != service_sentinel:
        raise ValidationError("Manual blocks need requester_id=-1 and service_id=-1 together")

    if manual_block or requester_sentinel:
        if requester_id is not None and not requester_sentinel:
            raise ValidationError("Manual blocks cannot name a requester")
        if services or (service_id is not None and not service_sentinel):
            raise ValidationError("Manual blocks cannot carry services")
        minutes = duration_minutes
        if minutes is None:
            minutes = parse_duration_marker(notes, config.default_duration_minutes)
        validate_duration(minutes, config.max_duration_minutes)
        return BookingRequest(
            provider_id=provider_id,
            requester=ProviderManualBlock(),
            selection=RawDuration(minutes),
            instant=instant,
            notes=notes,
        )

    if requester_id is not None and requester_id <= 0:
        raise ValidationError(f"Invalid requester_id {requester_id}")
    selection = resolve_selection(service_id, services)
    if selection is None:
        raise ValidationError("Select at least one service (service_id or services)")

    return BookingRequest(
        provider_id=provider_id,
        requester=RealAccount(requester_id if requester_id is not None else caller.id),
        selection=selection,
        instant=instant,
        notes=notes,
    )


def resolve_selection(
    service_id: int | None = None,
    services: list | None = None,
    duration_minutes: int | None = None,
) -> ServiceSelection | None:
    """Selection change of an update payload; None when the payload leaves services alone."""
    has_services = service_id is not None or bool(services)
    if has_services and duration_minutes is not None:
        raise ValidationError("Send either services or duration_minutes, not both")

    if duration_minutes is not None:
        return RawDuration(validate_duration(duration_minutes))
    if not has_services:
        return None

    if service_id is not None and service_id <= 0:
        raise ValidationError(f"Invalid service_id {service_id}")
    refs: list[ServiceRef] = []
    for item in services or []:
        ref = _to_service_ref(item)
        # a catalog service counts once however often it is listed
        if isinstance(ref, ServiceId) and ref in refs:
            continue
        refs.append(ref)
    # service_id leads the selection unless services[] already lists it
    if service_id is not None and ServiceId(service_id) not in refs:
        refs.insert(0, ServiceId(service_id))
    return CatalogSelection(tuple(refs))


def _to_service_ref(item) -> ServiceRef:
    if isinstance(item, bool):
        raise ValidationError(f"Invalid service reference {item!r}")
    if isinstance(item, int):
        if item <= 0:
            raise ValidationError(f"Invalid service id {item}")
        return ServiceId(item)
    if isinstance(item, dict):
        if item.get("id") is not None:
            return _to_service_ref(item["id"])
        name = item.get("name") or item.get("service_name")
        duration = item.get("duration_minutes")
        if not name or duration is None:
            raise ValidationError("Inline services need name and duration_minutes")
        validate_duration(duration)
        price_min, price_max = item.get("price_min"), item.get("price_max")
        _validate_prices(price_min, price_max)
        return InlineSnapshot(name=name, duration_minutes=duration, price_min=price_min, price_max=price_max)
    raise ValidationError(f"Invalid service reference {item!r}")


def _validate_prices(price_min, price_max) -> None:
    for value in (price_min, price_max):
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0):
            raise ValidationError(f"Invalid price {value!r}")
    if price_min is not None and price_max is not None and price_min > price_max:
        raise ValidationError("price_min cannot exceed price_max")


# ── Create ───────────────────────────────────────────────────────────────


def create_reservation(
    db: Session,
    request: BookingRequest,
    caller: CallerIdentity,
    config: BookingConfig | None = None,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> Reservations:
    """
    Book ``request`` atomically.

    Raises:
        ValidationError, NotFound, AuthorizationError before any write;
        SlotConflict when the interval is taken at commit time.
    """
    config = config or get_booking_config()
    now = now or datetime.now()

    # Step 1: everything that can be rejected without writing
    provider = catalog.get_provider(db, request.provider_id)
    _authorize_create(db, caller, request)

    if request.instant < now:
        raise ValidationError("Cannot book a time in the past")

    drafts = _resolve_snapshots(db, request.provider_id, request.selection, config)
    total_duration = _total_duration(request.selection, drafts)
    validate_duration(total_duration, config.max_duration_minutes)
    end = request.instant + timedelta(minutes=total_duration)

    if not request.is_manual_block:
        _check_within_opening_hours(provider, request.instant, end)

    # Steps 2–3: one atomic unit
    try:
        acquire_provider_lock(db, request.provider_id)

        conflicts = find_overlapping(db, request.provider_id, request.instant, end, config=config)
        if conflicts:
            raise SlotConflict("Time slot is not available")

        reservation = Reservations(
            provider_id=request.provider_id,
            requester_id=request.requester.user_id if isinstance(request.requester, RealAccount) else None,
            instant=request.instant,
            status=CONFIRMED if request.is_manual_block else PENDING,
            is_manual_block=request.is_manual_block,
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )
        db.add(reservation)
        db.flush()

        _apply_snapshots(db, reservation, drafts, total_duration)
        db.commit()
    except SlotConflict:
        db.rollback()
        logger.warning(
            f"Booking rejected (slot taken): provider={request.provider_id} "
            f"instant={request.instant.isoformat()} duration={total_duration}"
        )
        raise
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Booking failed: provider={request.provider_id}")
        raise InternalError("Failed to create reservation") from e

    db.refresh(reservation)
    logger.info(
        f"Reservation created: id={reservation.id} provider={reservation.provider_id} "
        f"requester={reservation.requester_id} instant={reservation.instant.isoformat()} "
        f"duration={reservation.total_duration_minutes} status={reservation.status}"
    )

    emit_reservation_event(redis, "booking_created", reservation, caller)
    return reservation


def _authorize_create(db: Session, caller: CallerIdentity, request: BookingRequest) -> None:
    owner = is_provider_owner(db, caller, request.provider_id)

    if request.is_manual_block:
        if not owner:
            logger.warning(f"Manual block refused: user={caller.id} provider={request.provider_id}")
            raise AuthorizationError("Only the provider's operator can block time manually")
        return

    has_inline = any(isinstance(ref, InlineSnapshot) for ref in request.selection.refs)
    if has_inline and not owner:
        raise AuthorizationError("Only the provider's operator can book inline services")

    user_id = request.requester.user_id
    if user_id != caller.id and not owner:
        raise AuthorizationError("You can only book appointments for yourself")
    if not db.get(Users, user_id):
        raise NotFound(f"User {user_id} not found")


# ── Update / reschedule ──────────────────────────────────────────────────

_UNSET = object()


def update_reservation(
    db: Session,
    reservation_id: int,
    caller: CallerIdentity,
    instant: datetime | None = None,
    selection: ServiceSelection | None = None,
    notes=_UNSET,
    status: str | None = None,
    config: BookingConfig | None = None,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> Reservations:
    """
    Change date, service selection, notes and/or status.

    Moving or resizing an active reservation re-runs the locked overlap
    check (ignoring the reservation itself). Terminal reservations are
    read-only.
    """
    config = config or get_booking_config()
    now = now or datetime.now()

    reservation = load_reservation(db, reservation_id)
    owner = is_provider_owner(db, caller, reservation.provider_id)
    if not owner and not is_requester(caller, reservation):
        raise AuthorizationError("Not authorized to update this reservation")

    if is_terminal(reservation.status):
        raise ValidationError(f"Cannot modify a {reservation.status} reservation")
    if status is not None and not owner and status != CANCELLED:
        raise AuthorizationError("Only the provider can change this status")

    drafts = None
    if selection is not None:
        if isinstance(selection, RawDuration) != bool(reservation.is_manual_block):
            raise ValidationError("Manual blocks take a duration, bookings take services")
        if isinstance(selection, CatalogSelection):
            if any(isinstance(ref, InlineSnapshot) for ref in selection.refs) and not owner:
                raise AuthorizationError("Only the provider's operator can book inline services")
        drafts = _resolve_snapshots(db, reservation.provider_id, selection, config)

    new_instant = instant or reservation.instant
    if drafts is not None:
        new_duration = _total_duration(selection, drafts)
    else:
        new_duration = reservation.total_duration_minutes or config.default_duration_minutes
    validate_duration(new_duration, config.max_duration_minutes)
    new_end = new_instant + timedelta(minutes=new_duration)

    moved = instant is not None or drafts is not None
    if moved:
        if new_instant < now:
            raise ValidationError("Cannot move a reservation into the past")
        if not reservation.is_manual_block:
            provider = catalog.get_provider(db, reservation.provider_id)
            _check_within_opening_hours(provider, new_instant, new_end)

    try:
        if moved and status != CANCELLED:
            acquire_provider_lock(db, reservation.provider_id)
            conflicts = find_overlapping(
                db, reservation.provider_id, new_instant, new_end,
                exclude_reservation_id=reservation.id, config=config,
            )
            if conflicts:
                raise SlotConflict("Time slot is not available")

        if instant is not None:
            reservation.instant = new_instant
        if drafts is not None:
            reservation.services.clear()
            db.flush()
            _apply_snapshots(db, reservation, drafts, new_duration)
        if notes is not _UNSET:
            reservation.notes = notes
        if status is not None:
            transition(reservation, status, now)

        reservation.updated_at = now
        db.commit()
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Reservation update failed: id={reservation_id}")
        raise InternalError("Failed to update reservation") from e

    db.refresh(reservation)
    logger.info(
        f"Reservation updated: id={reservation.id} by user={caller.id} "
        f"instant={reservation.instant.isoformat()} status={reservation.status}"
    )
    if status == CANCELLED:
        emit_reservation_event(redis, "booking_cancelled", reservation, caller)
    return reservation


# ── Helpers ──────────────────────────────────────────────────────────────


def _resolve_snapshots(
    db: Session,
    provider_id: int,
    selection: ServiceSelection,
    config: BookingConfig,
) -> list[_SnapshotDraft]:
    """Catalog values as of now; RawDuration has no snapshot rows."""
    if isinstance(selection, RawDuration):
        return []

    catalog_ids = [ref.id for ref in selection.refs if isinstance(ref, ServiceId)]
    services = {s.id: s for s in catalog.get_services(db, catalog_ids)}

    drafts = []
    for ref in selection.refs:
        if isinstance(ref, ServiceId):
            service = services[ref.id]
            if service.company_id != provider_id:
                raise ValidationError(f"Service {service.id} is not offered by provider {provider_id}")
            drafts.append(_SnapshotDraft(
                service_id=service.id,
                name=service.service_name,
                duration_minutes=service.duration_minutes or config.default_duration_minutes,
                price_min=service.price_min,
                price_max=service.price_max,
            ))
        else:
            drafts.append(_SnapshotDraft(
                service_id=None,
                name=ref.name,
                duration_minutes=ref.duration_minutes,
                price_min=ref.price_min,
                price_max=ref.price_max,
            ))
    return drafts


def _total_duration(selection: ServiceSelection, drafts: list[_SnapshotDraft]) -> int:
    if isinstance(selection, RawDuration):
        return selection.minutes
    return sum(draft.duration_minutes for draft in drafts)


def _apply_snapshots(
    db: Session,
    reservation: Reservations,
    drafts: list[_SnapshotDraft],
    total_duration: int,
) -> None:
    """Insert snapshot rows and write the running totals onto the reservation."""
    total_min = None
    total_max = None

    for draft in drafts:
        reservation.services.append(ReservationServices(
            service_id=draft.service_id,
            service_name=draft.name,
            price_min=draft.price_min,
            price_max=draft.price_max,
            duration_minutes=draft.duration_minutes,
        ))
        if draft.price_min is not None:
            total_min = (total_min or 0) + draft.price_min
        if draft.price_max is not None:
            total_max = (total_max or 0) + draft.price_max

    reservation.primary_service_id = drafts[0].service_id if drafts else None
    reservation.total_duration_minutes = total_duration
    reservation.total_price_min = total_min
    reservation.total_price_max = total_max
    db.flush()


def _check_within_opening_hours(provider: Companies, start: datetime, end: datetime) -> None:
    schedule = load_weekly_schedule(provider.opening_hours)
    day_schedule = get_day_schedule(schedule, start.date())
    if day_schedule is None:
        raise ValidationError("Provider is closed on this day")

    midnight = datetime.combine(start.date(), time.min)
    open_at = midnight + timedelta(minutes=day_schedule.open_minutes)
    close_at = midnight + timedelta(minutes=day_schedule.close_minutes)
    if start < open_at or end > close_at:
        raise ValidationError(
            f"Requested time is outside opening hours ({day_schedule.open}–{day_schedule.close})"
        )
