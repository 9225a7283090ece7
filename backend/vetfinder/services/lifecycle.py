# backend/vetfinder/services/lifecycle.py
"""
Reservation status lifecycle.

    pending ──► confirmed ──► completed
       │            │
       ├────────────┴──► cancelled   (caller-initiated)
       └────────────┴──► expired     (instant passed while still pending/confirmed)

cancelled / completed / expired are terminal. Expiry is recomputed
opportunistically (right before reservation lists are served), not by a
background scheduler, so it is only as fresh as the last read.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from ..errors import InvalidTransition, ValidationError
from ..models import Reservations

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"
EXPIRED = "expired"

STATUSES = (PENDING, CONFIRMED, CANCELLED, COMPLETED, EXPIRED)
ACTIVE_STATUSES = (PENDING, CONFIRMED)
TERMINAL_STATUSES = (CANCELLED, COMPLETED, EXPIRED)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED, EXPIRED}),
    CONFIRMED: frozenset({COMPLETED, CANCELLED, EXPIRED}),
    CANCELLED: frozenset(),
    COMPLETED: frozenset(),
    EXPIRED: frozenset(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(
    reservation: Reservations,
    target: str,
    now: datetime | None = None,
) -> Reservations:
    """
    Move ``reservation`` to ``target`` or raise InvalidTransition.

    Does not commit; the caller owns the unit of work.
    """
    now = now or datetime.now()

    if target not in STATUSES:
        raise ValidationError(f"Invalid status value: {target}")

    current = reservation.status
    if current == target:
        raise InvalidTransition(f"Reservation is already {current}")
    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot change status from {current} to {target}")
    if target == EXPIRED and reservation.instant >= now:
        raise InvalidTransition("Only reservations whose time has passed can expire")

    reservation.status = target
    reservation.updated_at = now
    return reservation


def expire_stale_reservations(
    db: Session,
    now: datetime | None = None,
    provider_id: int | None = None,
    requester_id: int | None = None,
) -> int:
    """
    Mark pending/confirmed reservations whose instant has passed as expired.

    Optionally scoped to one provider or one requester. Commits and returns
    the number of rows moved to ``expired``.
    """
    now = now or datetime.now()

    query = db.query(Reservations).filter(
        Reservations.status.in_(ACTIVE_STATUSES),
        Reservations.instant < now,
        Reservations.deleted.is_(False),
    )
    if provider_id is not None:
        query = query.filter(Reservations.provider_id == provider_id)
    if requester_id is not None:
        query = query.filter(Reservations.requester_id == requester_id)

    count = query.update(
        {Reservations.status: EXPIRED, Reservations.updated_at: now},
        synchronize_session="fetch",
    )
    db.commit()

    if count:
        scope = []
        if provider_id is not None:
            scope.append(f"provider={provider_id}")
        if requester_id is not None:
            scope.append(f"requester={requester_id}")
        logger.info(f"Expired {count} stale reservation(s) {' '.join(scope)}".rstrip())
    return count
