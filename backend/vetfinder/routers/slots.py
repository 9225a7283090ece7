# backend/vetfinder/routers/slots.py
"""
Availability API endpoints.

GET /availability/{provider_id}/{service_id}     - Slots sized by one or more services
GET /availability-by-duration/{provider_id}      - Slots sized by a raw duration (manual blocks)
POST /slots/invalidate                           - Drop cached grids after an opening-hours change
"""

from datetime import date
from fastapi import APIRouter, Depends, Query
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import AuthorizationError
from ..identity import CallerIdentity, get_caller
from ..redis_client import get_redis
from ..schemas.slots import AvailabilityResponse, SlotsInvalidateResponse
from ..services import catalog
from ..services.reservations import is_provider_owner
from ..services.slots import (
    get_booking_config,
    calculate_duration_availability,
    calculate_service_availability,
    invalidate_provider_cache,
)


router = APIRouter(tags=["availability"])


@router.get("/availability/{provider_id}/{service_id}", response_model=AvailabilityResponse)
def get_service_availability(
    provider_id: int,
    service_id: int,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    additional_service_ids: list[int] | None = Query(None, alias="additionalServiceIds"),
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    """Per-day slots for a service (plus optional add-on services)."""
    result = calculate_service_availability(
        db=db,
        provider_id=provider_id,
        service_id=service_id,
        start_date=start_date,
        end_date=end_date,
        additional_service_ids=additional_service_ids,
        config=get_booking_config(),
        redis=redis,
    )
    return AvailabilityResponse.model_validate(result)


@router.get("/availability-by-duration/{provider_id}", response_model=AvailabilityResponse)
def get_duration_availability(
    provider_id: int,
    duration: int,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    """Per-day slots for an explicit duration in minutes."""
    result = calculate_duration_availability(
        db=db,
        provider_id=provider_id,
        duration_minutes=duration,
        start_date=start_date,
        end_date=end_date,
        config=get_booking_config(),
        redis=redis,
    )
    return AvailabilityResponse.model_validate(result)


@router.post("/slots/invalidate", response_model=SlotsInvalidateResponse)
def invalidate_slots_cache(
    provider_id: int,
    dates: list[date] | None = Query(None),
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
    caller: CallerIdentity = Depends(get_caller),
):
    """Invalidate cached slot grids of a provider (provider operator only)."""
    catalog.get_provider(db, provider_id)
    if not is_provider_owner(db, caller, provider_id):
        raise AuthorizationError("Only the provider's operator can invalidate its cache")

    deleted = invalidate_provider_cache(redis, provider_id, dates) if redis is not None else 0

    return SlotsInvalidateResponse(
        provider_id=provider_id,
        deleted_keys=deleted,
        dates=dates if dates else "all",
    )
