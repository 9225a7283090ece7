# backend/vetfinder/redis_client.py
"""
Shared Redis client.

Redis is optional: without REDIS_URL the slot-grid cache is bypassed and
events are not queued. Everything that needs Redis takes it as an argument
(``Redis | None``) so callers decide.
"""

from redis import Redis

from .config import settings

redis_client: Redis | None = (
    Redis.from_url(settings.redis_url, socket_timeout=2.0) if settings.redis_url else None
)


# Dependency для FastAPI
def get_redis() -> Redis | None:
    return redis_client
