# backend/vetfinder/routers/appointments.py

from fastapi import APIRouter, Depends, Query, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..identity import CallerIdentity, get_caller
from ..redis_client import get_redis
from ..schemas.appointments import (
    AppointmentCreate,
    AppointmentRead,
    AppointmentUpdate,
)
from ..services import booking, reservations

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("/", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
    caller: CallerIdentity = Depends(get_caller),
):
    request = booking.resolve_booking_request(
        caller,
        provider_id=data.provider_id,
        instant=data.instant,
        requester_id=data.requester_id,
        service_id=data.service_id,
        services=data.service_payload(),
        notes=data.notes,
        duration_minutes=data.duration_minutes,
        manual_block=data.manual_block,
    )
    return booking.create_reservation(db, request, caller, redis=redis)


@router.get("/", response_model=list[AppointmentRead])
def list_appointments(
    owner: str = reservations.OWNER_SELF,
    status: str | None = None,
    provider_id: int | None = Query(None, alias="providerId"),
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
):
    return reservations.list_reservations(db, caller, owner=owner, status=status, provider_id=provider_id)


@router.get("/upcoming", response_model=list[AppointmentRead])
def list_upcoming_appointments(
    owner: str = reservations.OWNER_SELF,
    provider_id: int | None = Query(None, alias="providerId"),
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
):
    return reservations.list_reservations(
        db, caller, owner=owner, provider_id=provider_id, when=reservations.WHEN_UPCOMING
    )


@router.get("/past", response_model=list[AppointmentRead])
def list_past_appointments(
    owner: str = reservations.OWNER_SELF,
    provider_id: int | None = Query(None, alias="providerId"),
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
):
    return reservations.list_reservations(
        db, caller, owner=owner, provider_id=provider_id, when=reservations.WHEN_PAST
    )


@router.get("/{id}", response_model=AppointmentRead)
def get_appointment(
    id: int,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
):
    return reservations.get_reservation(db, id, caller)


@router.patch("/{id}", response_model=AppointmentRead)
def update_appointment(
    id: int,
    data: AppointmentUpdate,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
    caller: CallerIdentity = Depends(get_caller),
):
    changes = {}
    if "notes" in data.model_fields_set:
        changes["notes"] = data.notes

    return booking.update_reservation(
        db,
        id,
        caller,
        instant=data.instant,
        selection=booking.resolve_selection(data.service_id, data.service_payload(), data.duration_minutes),
        status=data.status,
        redis=redis,
        **changes,
    )


@router.patch("/{id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    id: int,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
    caller: CallerIdentity = Depends(get_caller),
):
    return reservations.cancel_reservation(db, id, caller, redis=redis)


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    id: int,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
):
    reservations.soft_delete_reservation(db, id, caller)
