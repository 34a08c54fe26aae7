from datetime import date, datetime, time

import pytest

from booking_backend.core.actors import Role
from booking_backend.core.config import SchedulingSettings
from booking_backend.core.errors import InvalidCodeError, InvalidTransitionError, PermissionDeniedError
from booking_backend.models.appointment import AppointmentStatus
from booking_backend.services.booking_service import BookingService
from booking_backend.services.confirmation_codes import codes_match, generate_code
from booking_backend.services.confirmation_service import ConfirmationService

CLIENT_ID = 501


@pytest.fixture
def booking(db_session, clock, settings) -> BookingService:
    return BookingService(db_session, clock=clock, settings=settings)


@pytest.fixture
def confirmations(db_session, booking) -> ConfirmationService:
    return ConfirmationService(db_session, booking)


@pytest.fixture
def confirmed_appointment(booking, service, provider, make_slot):
    make_slot(provider.id, date(2030, 1, 8), time(9, 0), time(17, 0))
    appointment = booking.create_appointment(CLIENT_ID, service.id, datetime(2030, 1, 8, 10, 0))
    return booking.update_status(appointment.id, provider.id, AppointmentStatus.CONFIRMED)


def test_generate_code_is_zero_padded_digits() -> None:
    codes = {generate_code(6) for _ in range(50)}

    assert all(len(code) == 6 and code.isdigit() for code in codes)


def test_codes_match_rejects_missing_values() -> None:
    assert codes_match('0421', '0421')
    assert not codes_match('0421', '421')
    assert not codes_match(None, '0421')


def test_code_length_follows_settings(db_session, clock, service) -> None:
    booking = BookingService(
        db_session,
        clock=clock,
        settings=SchedulingSettings(confirmation_code_length=6, require_availability=False),
    )

    appointment = booking.create_appointment(CLIENT_ID, service.id, datetime(2030, 1, 8, 10, 0))

    assert len(appointment.confirmation_code) == 6


def test_start_with_valid_code_moves_to_in_progress(confirmations, confirmed_appointment, provider) -> None:
    started = confirmations.start_with_code(
        confirmed_appointment.id,
        provider.id,
        confirmed_appointment.confirmation_code,
    )

    assert started.status == AppointmentStatus.IN_PROGRESS.value


def test_start_with_wrong_code_keeps_status(confirmations, confirmed_appointment, provider, db_session) -> None:
    wrong = '0000' if confirmed_appointment.confirmation_code != '0000' else '1111'

    with pytest.raises(InvalidCodeError) as exception_info:
        confirmations.start_with_code(confirmed_appointment.id, provider.id, wrong)

    assert exception_info.value.as_detail()['code'] == 'invalid_code'
    db_session.refresh(confirmed_appointment)
    assert confirmed_appointment.status == AppointmentStatus.CONFIRMED.value


def test_start_requires_confirmed_appointment(confirmations, booking, service, provider) -> None:
    booking.settings = SchedulingSettings(require_availability=False)
    pending = booking.create_appointment(CLIENT_ID, service.id, datetime(2030, 1, 9, 10, 0))

    with pytest.raises(InvalidTransitionError):
        confirmations.start_with_code(pending.id, provider.id, pending.confirmation_code)


def test_only_providers_start_appointments(confirmations, confirmed_appointment) -> None:
    with pytest.raises(PermissionDeniedError):
        confirmations.start_with_code(
            confirmed_appointment.id,
            CLIENT_ID,
            confirmed_appointment.confirmation_code,
            role=Role.CLIENT,
        )


def test_regenerate_code_issues_new_code_to_owner(confirmations, confirmed_appointment, provider, monkeypatch) -> None:
    monkeypatch.setattr('booking_backend.services.confirmation_service.generate_code', lambda length: '9876')

    reissued = confirmations.regenerate_code(confirmed_appointment.id, CLIENT_ID)

    assert reissued.confirmation_code == '9876'
    assert confirmations.start_with_code(reissued.id, provider.id, '9876').status == 'in_progress'


def test_regenerate_code_is_refused_once_started(confirmations, confirmed_appointment, provider) -> None:
    confirmations.start_with_code(confirmed_appointment.id, provider.id, confirmed_appointment.confirmation_code)

    with pytest.raises(InvalidTransitionError):
        confirmations.regenerate_code(confirmed_appointment.id, CLIENT_ID)
