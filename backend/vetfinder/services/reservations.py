# backend/vetfinder/services/reservations.py
"""
Reservation reads and simple state changes: fetch, list, cancel, soft delete.

Visibility: a reservation belongs to its requester and to the operator who
owns its provider. Soft-deleted rows behave as if they did not exist.
"""

import logging
from datetime import datetime

from redis import Redis
from sqlalchemy.orm import Session, selectinload

from ..errors import AuthorizationError, NotFound, ValidationError
from ..identity import CallerIdentity
from ..models import Reservations
from . import catalog
from .events import emit_reservation_event
from .lifecycle import CANCELLED, STATUSES, expire_stale_reservations, transition

logger = logging.getLogger(__name__)

OWNER_SELF = "self"
OWNER_PROVIDER = "provider"
WHEN_UPCOMING = "upcoming"
WHEN_PAST = "past"


# ── Access ───────────────────────────────────────────────────────────────


def is_provider_owner(db: Session, caller: CallerIdentity, provider_id: int) -> bool:
    return caller.is_provider_operator and catalog.owns_provider(db, caller.id, provider_id)


def is_requester(caller: CallerIdentity, reservation: Reservations) -> bool:
    return reservation.requester_id is not None and reservation.requester_id == caller.id


def load_reservation(db: Session, reservation_id: int) -> Reservations:
    reservation = (
        db.query(Reservations)
        .options(selectinload(Reservations.services))
        .filter(Reservations.id == reservation_id, Reservations.deleted.is_(False))
        .first()
    )
    if not reservation:
        raise NotFound(f"Reservation {reservation_id} not found")
    return reservation


def load_for_caller(db: Session, reservation_id: int, caller: CallerIdentity, action: str = "view") -> Reservations:
    reservation = load_reservation(db, reservation_id)
    if not is_requester(caller, reservation) and not is_provider_owner(db, caller, reservation.provider_id):
        raise AuthorizationError(f"Not authorized to {action} this reservation")
    return reservation


# ── Reads ────────────────────────────────────────────────────────────────


def get_reservation(db: Session, reservation_id: int, caller: CallerIdentity) -> Reservations:
    return load_for_caller(db, reservation_id, caller)


def list_reservations(
    db: Session,
    caller: CallerIdentity,
    owner: str = OWNER_SELF,
    status: str | None = None,
    provider_id: int | None = None,
    when: str | None = None,
    now: datetime | None = None,
) -> list[Reservations]:
    """
    Reservations of the caller (owner="self") or of the caller's providers
    (owner="provider"). Stale pending/confirmed rows are expired first.
    """
    now = now or datetime.now()

    if status is not None and status not in STATUSES:
        raise ValidationError(f"Invalid status value: {status}")
    if when not in (None, WHEN_UPCOMING, WHEN_PAST):
        raise ValidationError(f"Invalid when value: {when}")

    query = db.query(Reservations).options(selectinload(Reservations.services))

    if owner == OWNER_SELF:
        expire_stale_reservations(db, now=now, requester_id=caller.id)
        query = query.filter(Reservations.requester_id == caller.id)
        if provider_id is not None:
            query = query.filter(Reservations.provider_id == provider_id)

    elif owner == OWNER_PROVIDER:
        if not caller.is_provider_operator:
            raise AuthorizationError("Only provider operators can list provider reservations")

        if provider_id is not None:
            if not catalog.owns_provider(db, caller.id, provider_id):
                raise AuthorizationError("You can only view reservations of your own provider")
            provider_ids = [provider_id]
        else:
            provider_ids = [p.id for p in catalog.providers_owned_by(db, caller.id)]
            if not provider_ids:
                raise NotFound("No provider found for this account")

        for pid in provider_ids:
            expire_stale_reservations(db, now=now, provider_id=pid)
        query = query.filter(Reservations.provider_id.in_(provider_ids))

    else:
        raise ValidationError(f"Invalid owner value: {owner}")

    query = query.filter(Reservations.deleted.is_(False))
    if status is not None:
        query = query.filter(Reservations.status == status)

    if when == WHEN_UPCOMING:
        query = query.filter(
            Reservations.instant >= now,
            Reservations.status != CANCELLED,
        ).order_by(Reservations.instant.asc())
    elif when == WHEN_PAST:
        query = query.filter(Reservations.instant < now).order_by(Reservations.instant.desc())
    else:
        query = query.order_by(Reservations.instant.desc())

    return query.all()


# ── Writes ───────────────────────────────────────────────────────────────


def cancel_reservation(
    db: Session,
    reservation_id: int,
    caller: CallerIdentity,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> Reservations:
    reservation = load_for_caller(db, reservation_id, caller, action="cancel")
    transition(reservation, CANCELLED, now)
    db.commit()

    logger.info(f"Reservation cancelled: id={reservation.id} by user={caller.id}")
    emit_reservation_event(redis, "booking_cancelled", reservation, caller)
    return reservation


def soft_delete_reservation(
    db: Session,
    reservation_id: int,
    caller: CallerIdentity,
    now: datetime | None = None,
) -> None:
    reservation = load_for_caller(db, reservation_id, caller, action="delete")
    now = now or datetime.now()

    reservation.deleted = True
    reservation.deleted_at = now
    reservation.updated_at = now
    db.commit()

    logger.info(f"Reservation soft-deleted: id={reservation.id} by user={caller.id}")
