from .generated import (
    Base,
    Companies,
    CompanyServices,
    ProviderBookingLocks,
    ReservationServices,
    Reservations,
    Users,
    metadata,
)

__all__ = [
    "Base",
    "Companies",
    "CompanyServices",
    "ProviderBookingLocks",
    "ReservationServices",
    "Reservations",
    "Users",
    "metadata",
]
