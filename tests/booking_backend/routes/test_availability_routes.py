from datetime import date, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from booking_backend.core.actors import Actor, Role
from booking_backend.routes.availability_routes import (
    CreateSlotRequest,
    DayTemplate,
    TimeRange,
    UpdateSlotRequest,
    WeeklyTemplateRequest,
    apply_weekly_template,
    check_availability,
    create_slot,
    delete_slot,
    delete_slots_for_date,
    list_my_slots,
    list_provider_slots,
    update_slot,
)

TUESDAY = date(2030, 1, 8)


@pytest.fixture(autouse=True)
def skip_index_bootstrap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_backend.routes.availability_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def provider_actor(provider) -> Actor:
    return Actor(id=provider.id, role=Role.PROVIDER)


def test_create_slot_request_parses_clock_times_and_normalizes_reason() -> None:
    request = CreateSlotRequest(date=TUESDAY, start_time='09:00', end_time='12:30', reason='   ')

    assert request.start_time == time(9, 0)
    assert request.end_time == time(12, 30)
    assert request.reason is None


def test_create_slot_request_rejects_malformed_time() -> None:
    with pytest.raises(ValidationError):
        CreateSlotRequest(date=TUESDAY, start_time='9h00', end_time='12:00')


def test_weekly_template_request_rejects_reversed_dates() -> None:
    with pytest.raises(ValidationError):
        WeeklyTemplateRequest(
            start_date=date(2030, 1, 10),
            end_date=date(2030, 1, 8),
            days=[DayTemplate(weekday=1, slots=[TimeRange(start_time='09:00', end_time='12:00')])],
        )


def test_weekly_template_request_groups_slots_by_weekday() -> None:
    request = WeeklyTemplateRequest(
        start_date=date(2030, 1, 7),
        end_date=date(2030, 1, 13),
        days=[
            DayTemplate(weekday=0, slots=[TimeRange(start_time='09:00', end_time='12:00')]),
            DayTemplate(weekday=0, slots=[TimeRange(start_time='14:00', end_time='18:00')]),
        ],
    )

    assert request.as_mapping() == {0: [(time(9, 0), time(12, 0)), (time(14, 0), time(18, 0))]}


def test_create_slot_returns_formatted_slot(db_session, clock, provider_actor) -> None:
    response = create_slot(
        data=CreateSlotRequest(date=TUESDAY, start_time='09:00', end_time='12:00'),
        actor=provider_actor,
        db=db_session,
        clock=clock,
    )

    assert response.provider_id == provider_actor.id
    assert response.start_time == '09:00'
    assert response.end_time == '12:00'
    assert response.is_available is True


def test_create_slot_maps_overlap_to_conflict(db_session, clock, provider_actor, make_slot) -> None:
    make_slot(provider_actor.id, TUESDAY, time(9, 0), time(12, 0))

    with pytest.raises(HTTPException) as exception_info:
        create_slot(
            data=CreateSlotRequest(date=TUESDAY, start_time='11:00', end_time='13:00'),
            actor=provider_actor,
            db=db_session,
            clock=clock,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'overlap_conflict'
    assert exception_info.value.detail['conflicting_slot']['start_time'] == '09:00'


def test_create_slot_accepts_blocked_time_inside_open_slot(db_session, clock, provider_actor, make_slot) -> None:
    make_slot(provider_actor.id, TUESDAY, time(9, 0), time(17, 0))

    response = create_slot(
        data=CreateSlotRequest(
            date=TUESDAY, start_time='12:00', end_time='13:00', is_available=False, reason='Lunch',
        ),
        actor=provider_actor,
        db=db_session,
        clock=clock,
    )

    assert response.is_available is False
    assert response.reason == 'Lunch'

    check = check_availability(
        provider_id=provider_actor.id,
        slot_date=TUESDAY,
        start_time='11:30',
        end_time='12:30',
        actor=Actor(id=501, role=Role.CLIENT),
        db=db_session,
        clock=clock,
    )
    assert check.is_available is False


def test_create_slot_maps_reversed_interval_to_bad_request(db_session, clock, provider_actor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_slot(
            data=CreateSlotRequest(date=TUESDAY, start_time='12:00', end_time='09:00'),
            actor=provider_actor,
            db=db_session,
            clock=clock,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'invalid_interval'


def test_list_my_slots_returns_blocked_slots_too(db_session, clock, provider_actor, make_slot) -> None:
    make_slot(provider_actor.id, TUESDAY, time(9, 0), time(12, 0))
    make_slot(provider_actor.id, TUESDAY, time(12, 0), time(13, 0), is_available=False, reason='Lunch')

    response = list_my_slots(start_date=None, end_date=None, actor=provider_actor, db=db_session, clock=clock)

    assert [(slot.start_time, slot.is_available) for slot in response] == [('09:00', True), ('12:00', False)]


def test_list_provider_slots_hides_blocked_and_past_slots(db_session, clock, provider, make_slot) -> None:
    make_slot(provider.id, date(2030, 1, 6), time(9, 0), time(12, 0))
    make_slot(provider.id, TUESDAY, time(9, 0), time(12, 0))
    make_slot(provider.id, TUESDAY, time(12, 0), time(13, 0), is_available=False)

    response = list_provider_slots(
        provider_id=provider.id,
        start_date=None,
        end_date=None,
        actor=Actor(id=501, role=Role.CLIENT),
        db=db_session,
        clock=clock,
    )

    assert [(slot.date, slot.start_time) for slot in response] == [(TUESDAY, '09:00')]


def test_update_slot_only_changes_sent_fields(db_session, clock, provider_actor, make_slot) -> None:
    slot = make_slot(provider_actor.id, TUESDAY, time(9, 0), time(12, 0), reason='Mornings')

    response = update_slot(
        slot_id=slot.id,
        data=UpdateSlotRequest(end_time='13:00'),
        actor=provider_actor,
        db=db_session,
        clock=clock,
    )

    assert response.end_time == '13:00'
    assert response.reason == 'Mornings'


def test_update_slot_of_unknown_slot_is_not_found(db_session, clock, provider_actor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_slot(
            slot_id=999,
            data=UpdateSlotRequest(is_available=False),
            actor=provider_actor,
            db=db_session,
            clock=clock,
        )

    assert exception_info.value.status_code == 404


def test_delete_slot_returns_no_content_even_when_missing(db_session, clock, provider_actor, make_slot) -> None:
    slot_id = make_slot(provider_actor.id, TUESDAY, time(9, 0), time(12, 0)).id

    assert delete_slot(slot_id=slot_id, actor=provider_actor, db=db_session, clock=clock).status_code == 204
    assert delete_slot(slot_id=slot_id, actor=provider_actor, db=db_session, clock=clock).status_code == 204


def test_delete_slots_for_date_reports_count(db_session, clock, provider_actor, make_slot) -> None:
    make_slot(provider_actor.id, TUESDAY, time(9, 0), time(12, 0))
    make_slot(provider_actor.id, TUESDAY, time(13, 0), time(17, 0))

    response = delete_slots_for_date(slot_date=TUESDAY, actor=provider_actor, db=db_session, clock=clock)

    assert response.deleted == 2


def test_apply_weekly_template_reports_created_and_skipped(db_session, clock, provider_actor, make_slot) -> None:
    make_slot(provider_actor.id, date(2030, 1, 10), time(10, 0), time(11, 0))

    response = apply_weekly_template(
        data=WeeklyTemplateRequest(
            start_date=date(2030, 1, 7),
            end_date=date(2030, 1, 13),
            days=[
                DayTemplate(weekday=1, slots=[TimeRange(start_time='09:00', end_time='12:00')]),
                DayTemplate(weekday=3, slots=[TimeRange(start_time='09:00', end_time='12:00')]),
            ],
        ),
        actor=provider_actor,
        db=db_session,
        clock=clock,
    )

    assert [(slot.date, slot.start_time) for slot in response.created] == [(TUESDAY, '09:00')]
    assert [(item.date, item.reason) for item in response.skipped] == [(date(2030, 1, 10), 'overlap_conflict')]


def test_check_availability_reports_containment(db_session, clock, provider, make_slot) -> None:
    make_slot(provider.id, TUESDAY, time(9, 0), time(12, 0))
    client = Actor(id=501, role=Role.CLIENT)

    inside = check_availability(
        provider_id=provider.id, slot_date=TUESDAY, start_time='10:00', end_time='11:00',
        actor=client, db=db_session, clock=clock,
    )
    outside = check_availability(
        provider_id=provider.id, slot_date=TUESDAY, start_time='11:00', end_time='12:30',
        actor=client, db=db_session, clock=clock,
    )

    assert inside.is_available is True
    assert outside.is_available is False


def test_check_availability_rejects_malformed_time(db_session, clock, provider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        check_availability(
            provider_id=provider.id, slot_date=TUESDAY, start_time='10', end_time='11:00',
            actor=Actor(id=501, role=Role.CLIENT), db=db_session, clock=clock,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid time format. Use HH:MM (e.g. 09:35).'
