# backend/vetfinder/services/slots/invalidator.py
"""
Cache invalidation for provider slot grids.

Triggers:
✓ Provider opening_hours changed → invalidate all dates (every cached duration)

Does NOT trigger:
✗ Reservation created/cancelled/deleted (occupancy is read live)
"""

import logging
from datetime import date, timedelta

from redis import Redis

from .redis_store import SlotsRedisStore

logger = logging.getLogger(__name__)


def invalidate_provider_cache(
    redis: Redis,
    provider_id: int,
    dates: list[date] | None = None,
) -> int:
    """Drop a provider's cached grids; returns the number of deleted keys."""
    deleted = SlotsRedisStore(redis).delete_grids(provider_id, dates)
    logger.info(f"Slot cache invalidated: provider={provider_id} dates={len(dates) if dates else 'all'} keys={deleted}")
    return deleted


def dates_between(first: date, last: date) -> list[date]:
    """Every calendar date of [first, last], in order."""
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]
