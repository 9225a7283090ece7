# backend/vetfinder/services/catalog.py
"""
Read-only access to the provider / service catalog.

The catalog is maintained elsewhere; the scheduling core only needs a
provider's weekly schedule and a service's name, price range and duration.
"""

from sqlalchemy.orm import Session

from ..errors import NotFound
from ..models import Companies, CompanyServices
from .slots.opening_hours import WeeklySchedule, load_weekly_schedule


def get_provider(db: Session, provider_id: int) -> Companies:
    provider = db.get(Companies, provider_id)
    if not provider:
        raise NotFound(f"Provider {provider_id} not found")
    return provider


def get_provider_schedule(db: Session, provider_id: int) -> WeeklySchedule:
    provider = get_provider(db, provider_id)
    return load_weekly_schedule(provider.opening_hours)


def get_service(db: Session, service_id: int) -> CompanyServices:
    service = db.get(CompanyServices, service_id)
    if not service:
        raise NotFound(f"Service {service_id} not found")
    return service


def get_services(db: Session, service_ids: list[int]) -> list[CompanyServices]:
    """Services in the order requested; NotFound names the first missing id."""
    if not service_ids:
        return []

    rows = db.query(CompanyServices).filter(CompanyServices.id.in_(set(service_ids))).all()
    by_id = {row.id: row for row in rows}

    for service_id in service_ids:
        if service_id not in by_id:
            raise NotFound(f"Service {service_id} not found")
    return [by_id[service_id] for service_id in service_ids]


def providers_owned_by(db: Session, user_id: int) -> list[Companies]:
    return db.query(Companies).filter(Companies.owner_id == user_id).order_by(Companies.id).all()


def owns_provider(db: Session, user_id: int, provider_id: int) -> bool:
    provider = db.get(Companies, provider_id)
    return provider is not None and provider.owner_id == user_id
