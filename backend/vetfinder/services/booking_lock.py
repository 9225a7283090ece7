# backend/vetfinder/services/booking_lock.py
"""
Per-provider booking mutex.

Every transaction that may add or move an active reservation first bumps
the provider's row in provider_booking_locks:

    INSERT INTO provider_booking_locks (provider_id, version) VALUES (:id, 1)
    ON CONFLICT (provider_id) DO UPDATE SET version = version + 1

PostgreSQL holds the row lock until commit/rollback; SQLite takes the
database write lock. Either way a second writer for the same provider waits
here, and its overlap check runs only after the first one has committed.
Must be the first write of the transaction.
"""

import logging

from sqlalchemy.orm import Session

from ..models import ProviderBookingLocks

logger = logging.getLogger(__name__)


def acquire_provider_lock(db: Session, provider_id: int) -> None:
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        _acquire_generic(db, provider_id)
        return

    stmt = insert(ProviderBookingLocks).values(provider_id=provider_id, version=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[ProviderBookingLocks.provider_id],
        set_={"version": ProviderBookingLocks.version + 1},
    )
    db.execute(stmt)
    logger.debug(f"Booking lock acquired: provider={provider_id}")


def _acquire_generic(db: Session, provider_id: int) -> None:
    """SELECT ... FOR UPDATE on the lock row, creating it on first use."""
    row = (
        db.query(ProviderBookingLocks)
        .filter(ProviderBookingLocks.provider_id == provider_id)
        .with_for_update()
        .first()
    )
    if row is None:
        row = ProviderBookingLocks(provider_id=provider_id, version=0)
        db.add(row)
    row.version += 1
    db.flush()
