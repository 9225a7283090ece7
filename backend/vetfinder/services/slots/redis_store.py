# backend/vetfinder/services/slots/redis_store.py
"""
Redis storage for candidate slot grids using Sorted Sets.

Key format: slots:day:{provider_id}:{duration}:{date}
Value: Sorted Set where member = "HH:MM", score = slot start timestamp.

Only the opening-hours grid is cached; reservations are always read live.
Scores keep members ordered by start time.
Sentinel: "__empty__" with score=0 marks "calculated, zero slots".
"""

from datetime import date, datetime, time

from redis import Redis

from .config import BookingConfig, get_booking_config, minutes_to_time_str, time_str_to_minutes


EMPTY_SENTINEL = "__empty__"


def _decode(member) -> str:
    return member.decode() if isinstance(member, bytes) else member


class SlotsRedisStore:
    """Redis storage wrapper using Sorted Sets for candidate grids."""

    KEY_PREFIX = "slots:day"

    def __init__(self, redis: Redis, config: BookingConfig | None = None):
        self.redis = redis
        self.config = config or get_booking_config()

    def _key(self, provider_id: int, duration_minutes: int, dt: date) -> str:
        return f"{self.KEY_PREFIX}:{provider_id}:{duration_minutes}:{dt.isoformat()}"

    # ── Write ────────────────────────────────────────────────────────────

    def store_day_grid(
        self,
        provider_id: int,
        duration_minutes: int,
        dt: date,
        start_minutes: list[int],
    ) -> None:
        """
        Store the candidate grid of a day.

        Args:
            provider_id: Provider ID
            duration_minutes: Slot length the grid was built for
            dt: Target date
            start_minutes: Slot starts as minutes since midnight.
                           Empty list → sentinel is stored.
        """
        key = self._key(provider_id, duration_minutes, dt)
        midnight = datetime.combine(dt, time.min).timestamp()
        pipe = self.redis.pipeline()

        # Remove old data
        pipe.delete(key)

        if start_minutes:
            mapping = {
                minutes_to_time_str(m): midnight + m * 60
                for m in start_minutes
            }
            pipe.zadd(key, mapping)
        else:
            # Empty day: sentinel so EXISTS returns True
            pipe.zadd(key, {EMPTY_SENTINEL: 0})
        pipe.expire(key, self.config.cache_ttl_seconds)

        pipe.execute()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_day_grid(
        self,
        provider_id: int,
        duration_minutes: int,
        dt: date,
    ) -> list[int] | None:
        """
        Cached slot starts for a day.

        Returns:
            Sorted minutes since midnight, or None on cache miss.
        """
        key = self._key(provider_id, duration_minutes, dt)
        if not self.redis.exists(key):
            return None

        members = self.redis.zrangebyscore(key, "-inf", "+inf")
        return sorted(
            time_str_to_minutes(_decode(m))
            for m in members
            if _decode(m) != EMPTY_SENTINEL
        )

    # ── Delete ───────────────────────────────────────────────────────────

    def delete_grids(
        self,
        provider_id: int,
        dates: list[date] | None = None,
    ) -> int:
        """
        Delete cached grids of a provider (every duration).

        Args:
            provider_id: Provider ID
            dates: Specific dates, or None to delete all for provider.

        Returns:
            Number of deleted keys.
        """
        if dates:
            keys = []
            for dt in dates:
                keys.extend(self.redis.keys(f"{self.KEY_PREFIX}:{provider_id}:*:{dt.isoformat()}"))
        else:
            keys = self.redis.keys(f"{self.KEY_PREFIX}:{provider_id}:*")

        if not keys:
            return 0

        return self.redis.delete(*keys)
