"""
backend/vetfinder/services/events.py

Reservation events for notification workers.

Queue: events:p2p (instant delivery to the requester / provider operator)
"""

import json
import time
import logging

from redis import Redis

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"


def emit_event(redis: Redis | None, event_type: str, payload: dict) -> None:
    """
    Push an event to ``events:p2p``.

    Called after commit; a failure is logged and never undoes the write.
    Without Redis nothing is queued.
    """
    if redis is None:
        return

    body = json.dumps({"type": event_type, **payload, "ts": int(time.time())}, default=str)
    try:
        redis.rpush(P2P_QUEUE, body)
        logger.info(f"Event emitted: {event_type} → {P2P_QUEUE}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")


def emit_reservation_event(redis: Redis | None, event_type: str, reservation, caller) -> None:
    emit_event(redis, event_type, {
        "booking_id": reservation.id,
        "provider_id": reservation.provider_id,
        "requester_id": reservation.requester_id,
        "instant": reservation.instant.isoformat(),
        "initiated_by": {"user_id": caller.id, "role": caller.role},
    })
