"""
Pytest configuration: in-memory database, seeded catalog, API client.
"""

import json
from datetime import date, datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vetfinder.database import build_engine, get_db
from vetfinder.identity import ROLE_CLIENT, ROLE_PROVIDER, CallerIdentity
from vetfinder.main import app
from vetfinder.models import Base, Companies, CompanyServices, Reservations, Users
from vetfinder.redis_client import get_redis

CLIENT_ID = 1
OTHER_CLIENT_ID = 2
OPERATOR_ID = 10
OTHER_OPERATOR_ID = 11

PROVIDER_ID = 1
OTHER_PROVIDER_ID = 2

CONSULTATION_ID = 1  # 30 min, 20–30
VACCINATION_ID = 2   # 45 min, 15–25
SURGERY_ID = 3       # 120 min, no price
GROOMING_ID = 4      # other provider

# 09:00–12:00 on weekdays and Saturday, closed on Sunday
MORNING_HOURS = {
    **{day: {"open": "09:00", "close": "12:00"} for day in
       ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday")},
    "sunday": {"closed": True},
}
LONG_HOURS = {day: {"open": "08:00", "close": "18:00"} for day in
              ("mon", "tue", "wed", "thu", "fri", "sat", "sun")}


def seed_catalog(db):
    db.add_all([
        Users(id=CLIENT_ID, name="Anna", email="anna@example.com", role=ROLE_CLIENT),
        Users(id=OTHER_CLIENT_ID, name="Boris", email="boris@example.com", role=ROLE_CLIENT),
        Users(id=OPERATOR_ID, name="Happy Paws admin", role=ROLE_PROVIDER),
        Users(id=OTHER_OPERATOR_ID, name="Other clinic admin", role=ROLE_PROVIDER),
    ])
    db.add_all([
        Companies(id=PROVIDER_ID, owner_id=OPERATOR_ID, name="Happy Paws",
                  opening_hours=json.dumps(MORNING_HOURS)),
        Companies(id=OTHER_PROVIDER_ID, owner_id=OTHER_OPERATOR_ID, name="Other Clinic",
                  opening_hours=json.dumps(LONG_HOURS)),
    ])
    db.add_all([
        CompanyServices(id=CONSULTATION_ID, company_id=PROVIDER_ID, service_name="Consultation",
                        price_min=20, price_max=30, duration_minutes=30),
        CompanyServices(id=VACCINATION_ID, company_id=PROVIDER_ID, service_name="Vaccination",
                        price_min=15, price_max=25, duration_minutes=45),
        CompanyServices(id=SURGERY_ID, company_id=PROVIDER_ID, service_name="Surgery",
                        duration_minutes=120),
        CompanyServices(id=GROOMING_ID, company_id=OTHER_PROVIDER_ID, service_name="Grooming",
                        price_min=40, price_max=60, duration_minutes=60),
    ])
    db.commit()


def next_weekday(weekday: int, min_days_ahead: int = 2) -> date:
    """First date at least ``min_days_ahead`` from today falling on ``weekday`` (0 = Monday)."""
    d = date.today() + timedelta(days=min_days_ahead)
    while d.weekday() != weekday:
        d += timedelta(days=1)
    return d


def at(day: date, hhmm: str) -> datetime:
    hours, minutes = map(int, hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes))


def headers_for(user_id: int, role: str) -> dict:
    return {"X-User-ID": str(user_id), "X-User-Role": role}


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_catalog(session)
    yield session
    session.close()


@pytest.fixture
def monday():
    return next_weekday(0)


@pytest.fixture
def sunday():
    return next_weekday(6)


@pytest.fixture
def client_caller():
    return CallerIdentity(id=CLIENT_ID, role=ROLE_CLIENT)


@pytest.fixture
def other_client_caller():
    return CallerIdentity(id=OTHER_CLIENT_ID, role=ROLE_CLIENT)


@pytest.fixture
def operator_caller():
    return CallerIdentity(id=OPERATOR_ID, role=ROLE_PROVIDER)


@pytest.fixture
def other_operator_caller():
    return CallerIdentity(id=OTHER_OPERATOR_ID, role=ROLE_PROVIDER)


@pytest.fixture
def api(db, session_factory):
    """TestClient against the seeded database; Redis disabled."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client_headers():
    return headers_for(CLIENT_ID, ROLE_CLIENT)


@pytest.fixture
def operator_headers():
    return headers_for(OPERATOR_ID, ROLE_PROVIDER)


@pytest.fixture
def add_reservation(db):
    """Insert a reservation row directly, bypassing the booking transaction."""
    def _add(instant, duration=30, status="confirmed", provider_id=PROVIDER_ID,
             requester_id=CLIENT_ID, deleted=False, service_id=CONSULTATION_ID):
        reservation = Reservations(
            provider_id=provider_id,
            requester_id=requester_id,
            primary_service_id=service_id,
            instant=instant,
            status=status,
            total_duration_minutes=duration,
            deleted=deleted,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
        db.add(reservation)
        db.commit()
        return reservation
    return _add
