# backend/vetfinder/schemas/appointments.py

from datetime import datetime
from typing import Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator


def _to_local_naive(value: datetime) -> datetime:
    # Reservations are stored as naive local time
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class ServiceItem(BaseModel):
    """Catalog reference ({"id": n}) or inline snapshot (provider operators only)."""
    id: Optional[int] = None
    name: Optional[str] = Field(None, validation_alias=AliasChoices("name", "service_name"))
    duration_minutes: Optional[int] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None


class AppointmentCreate(BaseModel):
    provider_id: int = Field(validation_alias=AliasChoices("provider_id", "providerId"))
    instant: datetime = Field(validation_alias=AliasChoices("instant", "date"))

    service_id: Optional[int] = Field(None, validation_alias=AliasChoices("service_id", "serviceId"))
    services: Optional[list[int | ServiceItem]] = None

    # -1 together with service_id=-1 → provider manual block
    requester_id: Optional[int] = Field(None, validation_alias=AliasChoices("requester_id", "requesterId"))
    manual_block: bool = False
    duration_minutes: Optional[int] = None

    notes: Optional[str] = None

    @field_validator("instant")
    @classmethod
    def local_instant(cls, value: datetime) -> datetime:
        return _to_local_naive(value)

    def service_payload(self) -> list | None:
        if self.services is None:
            return None
        return [
            item if isinstance(item, int) else item.model_dump(exclude_none=True)
            for item in self.services
        ]


class AppointmentUpdate(BaseModel):
    instant: Optional[datetime] = Field(None, validation_alias=AliasChoices("instant", "date"))
    service_id: Optional[int] = Field(None, validation_alias=AliasChoices("service_id", "serviceId"))
    services: Optional[list[int | ServiceItem]] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    status: Optional[str] = None

    @field_validator("instant")
    @classmethod
    def local_instant(cls, value: datetime | None) -> datetime | None:
        return _to_local_naive(value) if value is not None else None

    def service_payload(self) -> list | None:
        if self.services is None:
            return None
        return [
            item if isinstance(item, int) else item.model_dump(exclude_none=True)
            for item in self.services
        ]


class ReservationServiceRead(BaseModel):
    id: int
    service_id: Optional[int] = None
    service_name: str
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    duration_minutes: int

    model_config = {"from_attributes": True}


class AppointmentRead(BaseModel):
    id: int

    provider_id: int
    requester_id: Optional[int] = None
    primary_service_id: Optional[int] = None
    is_manual_block: bool

    instant: datetime
    status: str

    total_duration_minutes: Optional[int] = None
    total_price_min: Optional[float] = None
    total_price_max: Optional[float] = None

    notes: Optional[str] = None
    services: list[ReservationServiceRead] = []

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
