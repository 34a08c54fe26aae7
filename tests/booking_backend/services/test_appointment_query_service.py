from datetime import datetime

import pytest

from booking_backend.core.actors import Role
from booking_backend.core.config import SchedulingSettings
from booking_backend.core.errors import NotFoundError, PermissionDeniedError
from booking_backend.models.appointment import AppointmentStatus
from booking_backend.services.appointment_query_service import AppointmentQueryService
from booking_backend.services.booking_service import BookingService

CLIENT_ID = 501
OTHER_CLIENT_ID = 502


@pytest.fixture
def booking(db_session, clock) -> BookingService:
    return BookingService(db_session, clock=clock, settings=SchedulingSettings(require_availability=False))


@pytest.fixture
def queries(db_session) -> AppointmentQueryService:
    return AppointmentQueryService(db_session)


@pytest.fixture
def appointments(booking, service):
    return [
        booking.create_appointment(CLIENT_ID, service.id, datetime(2030, 1, 8, 9, 0)),
        booking.create_appointment(CLIENT_ID, service.id, datetime(2030, 1, 9, 9, 0)),
        booking.create_appointment(OTHER_CLIENT_ID, service.id, datetime(2030, 1, 8, 14, 0)),
    ]


def test_client_listing_is_newest_first_and_scoped(queries, appointments) -> None:
    page = queries.list_appointments(CLIENT_ID, Role.CLIENT)

    assert [item.id for item in page.items] == [appointments[1].id, appointments[0].id]
    assert page.total == 2
    assert page.total_pages == 1


def test_provider_listing_is_soonest_first(queries, appointments, provider) -> None:
    page = queries.list_appointments(provider.id, Role.PROVIDER)

    assert [item.id for item in page.items] == [appointments[0].id, appointments[2].id, appointments[1].id]


def test_listing_filters_by_status_and_range(queries, appointments, booking, provider) -> None:
    booking.update_status(appointments[0].id, provider.id, AppointmentStatus.CONFIRMED)

    confirmed = queries.list_appointments(provider.id, Role.PROVIDER, status=AppointmentStatus.CONFIRMED)
    assert [item.id for item in confirmed.items] == [appointments[0].id]

    tuesday = queries.list_appointments(
        provider.id,
        Role.PROVIDER,
        start=datetime(2030, 1, 8, 0, 0),
        end=datetime(2030, 1, 8, 23, 59),
    )
    assert tuesday.total == 2


def test_listing_is_paginated(queries, appointments, provider) -> None:
    first = queries.list_appointments(provider.id, Role.PROVIDER, page=1, page_size=2)
    second = queries.list_appointments(provider.id, Role.PROVIDER, page=2, page_size=2)

    assert len(first.items) == 2
    assert [item.id for item in second.items] == [appointments[1].id]
    assert first.total == 3
    assert first.total_pages == 2


def test_listing_rejects_bad_paging_and_admin(queries) -> None:
    with pytest.raises(ValueError):
        queries.list_appointments(CLIENT_ID, Role.CLIENT, page=0)

    with pytest.raises(PermissionDeniedError):
        queries.list_appointments(1, Role.ADMIN)


def test_get_appointment_is_visible_to_both_parties_and_admin(queries, appointments, provider) -> None:
    appointment_id = appointments[0].id

    assert queries.get_appointment(appointment_id, CLIENT_ID, Role.CLIENT).id == appointment_id
    assert queries.get_appointment(appointment_id, provider.id, Role.PROVIDER).id == appointment_id
    assert queries.get_appointment(appointment_id, 1, Role.ADMIN).id == appointment_id


def test_get_appointment_hides_other_clients_appointments(queries, appointments) -> None:
    with pytest.raises(NotFoundError):
        queries.get_appointment(appointments[0].id, OTHER_CLIENT_ID, Role.CLIENT)

    with pytest.raises(NotFoundError):
        queries.get_appointment(9999, CLIENT_ID, Role.CLIENT)
