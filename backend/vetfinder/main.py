# backend/vetfinder/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.exceptions import RedisError

from .config import settings
from .database import init_db
from .errors import register_exception_handlers
from .redis_client import redis_client
from .routers import appointments, slots

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("VetFinder booking API started")
    yield


app = FastAPI(title="VetFinder Booking API", lifespan=lifespan)
register_exception_handlers(app)

app.include_router(slots.router)
app.include_router(appointments.router)


@app.get("/health")
def health():
    if redis_client is None:
        return {"status": "ok", "redis": None}
    try:
        return {"status": "ok", "redis": redis_client.ping()}
    except RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return {"status": "ok", "redis": False}
