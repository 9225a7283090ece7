from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, Text, false, text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


# ── Catalog (owned by other services, read-only here) ───────────────────


class Users(Base):
    __tablename__ = 'users'

    name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    email = Column(Text)
    role = Column(Text, nullable=False, server_default=text("'user'"))

    reservations = relationship('Reservations', back_populates='requester')


class Companies(Base):
    __tablename__ = 'companies'

    owner_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    opening_hours = Column(Text, nullable=False, server_default=text("'{}'"))
    id = Column(Integer, primary_key=True)

    owner = relationship('Users')
    services = relationship('CompanyServices', back_populates='company')
    reservations = relationship('Reservations', back_populates='provider')


class CompanyServices(Base):
    __tablename__ = 'company_services'

    company_id = Column(ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    service_name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    price_min = Column(Float)
    price_max = Column(Float)
    duration_minutes = Column(Integer)

    company = relationship('Companies', back_populates='services')


# ── Scheduling core ─────────────────────────────────────────────────────


class Reservations(Base):
    __tablename__ = 'reservations'
    __table_args__ = (
        Index('ix_reservations_provider_instant', 'provider_id', 'instant'),
        Index('ix_reservations_requester_status', 'requester_id', 'status'),
    )

    provider_id = Column(ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    # NULL together with is_manual_block=1 → block placed by the provider itself
    requester_id = Column(ForeignKey('users.id', ondelete='CASCADE'))
    primary_service_id = Column(ForeignKey('company_services.id', ondelete='SET NULL'))
    instant = Column(DateTime, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    is_manual_block = Column(Boolean, nullable=False, server_default=false())
    total_duration_minutes = Column(Integer)
    total_price_min = Column(Float)
    total_price_max = Column(Float)
    notes = Column(Text)
    deleted = Column(Boolean, nullable=False, server_default=false())
    deleted_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(DateTime, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)

    provider = relationship('Companies', back_populates='reservations')
    requester = relationship('Users', back_populates='reservations')
    primary_service = relationship('CompanyServices')
    services = relationship(
        'ReservationServices',
        back_populates='reservation',
        cascade='all, delete-orphan',
        order_by='ReservationServices.id',
    )


class ReservationServices(Base):
    __tablename__ = 'reservation_services'

    reservation_id = Column(ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False, index=True)
    # Catalog row may be deleted later; the snapshot columns keep the booking intact
    service_id = Column(ForeignKey('company_services.id', ondelete='SET NULL'))
    service_name = Column(Text, nullable=False)
    price_min = Column(Float)
    price_max = Column(Float)
    duration_minutes = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)

    reservation = relationship('Reservations', back_populates='services')


class ProviderBookingLocks(Base):
    """One row per provider; writers bump ``version`` to serialize booking transactions."""
    __tablename__ = 'provider_booking_locks'

    provider_id = Column(ForeignKey('companies.id', ondelete='CASCADE'), primary_key=True)
    version = Column(Integer, nullable=False, server_default=text('0'))
