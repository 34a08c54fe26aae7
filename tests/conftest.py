import os
from datetime import date, datetime, time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from booking_backend.core.clock import FixedClock  # noqa: E402
from booking_backend.core.config import SchedulingSettings  # noqa: E402
from booking_backend.database import Base  # noqa: E402
from booking_backend.models import appointment, availability, reliability  # noqa: E402,F401
from booking_backend.models.availability import AvailabilitySlot  # noqa: E402
from booking_backend.models.catalog import Provider, Service  # noqa: E402

# Monday, 08:00 UTC.
NOW = datetime(2030, 1, 7, 8, 0)
TODAY = date(2030, 1, 7)
TOMORROW = date(2030, 1, 8)

CLIENT_ID = 501
OTHER_CLIENT_ID = 502


@pytest.fixture
def db_engine():
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db_session(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def settings() -> SchedulingSettings:
    return SchedulingSettings()


@pytest.fixture
def provider(db_session) -> Provider:
    record = Provider(business_name='Studio Lumen', city='Lyon', neighborhood='Croix-Rousse')
    db_session.add(record)
    db_session.commit()
    db_session.refresh(record)
    return record


@pytest.fixture
def service(db_session, provider) -> Service:
    return add_service(db_session, provider.id)


def add_service(db, provider_id: int, name: str = 'Haircut', price: str = '35.50', duration_minutes: int = 60,
                is_active: bool = True) -> Service:
    record = Service(
        provider_id=provider_id,
        name=name,
        price=Decimal(price),
        duration_minutes=duration_minutes,
        is_active=is_active,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def add_slot(db, provider_id: int, slot_date: date, start: time, end: time, is_available: bool = True,
             reason: str | None = None) -> AvailabilitySlot:
    slot = AvailabilitySlot(
        provider_id=provider_id,
        date=slot_date,
        start_time=start,
        end_time=end,
        is_available=is_available,
        reason=reason,
    )
    db.add(slot)
    db.commit()
    db.refresh(slot)
    return slot


@pytest.fixture
def make_service(db_session):
    def factory(provider_id: int, **kwargs) -> Service:
        return add_service(db_session, provider_id, **kwargs)

    return factory


@pytest.fixture
def make_slot(db_session):
    def factory(provider_id: int, slot_date: date, start: time, end: time, **kwargs) -> AvailabilitySlot:
        return add_slot(db_session, provider_id, slot_date, start, end, **kwargs)

    return factory
