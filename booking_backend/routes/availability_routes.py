from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_actor, require_roles
from booking_backend.core.actors import Actor, Role
from booking_backend.core.clock import Clock
from booking_backend.core.errors import BookingError
from booking_backend.core.time_utils import format_time, parse_time
from booking_backend.database import get_db
from booking_backend.models.availability import AvailabilitySlot
from booking_backend.routes.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_clock,
    to_http_exception,
)
from booking_backend.services.availability_service import AvailabilityService, SkippedSlot

router = APIRouter(tags=['availability'])

MAX_REASON_LENGTH = 255
MAX_TEMPLATE_DAYS = 92

require_provider = require_roles(Role.PROVIDER)


def _coerce_time(value):
    if isinstance(value, str):
        return parse_time(value)
    return value


def _normalize_reason(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


class CreateSlotRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    is_available: bool = True
    reason: str | None = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_clock_time(cls, value):
        return _coerce_time(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class UpdateSlotRequest(BaseModel):
    start_time: time | None = None
    end_time: time | None = None
    is_available: bool | None = None
    reason: str | None = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_clock_time(cls, value):
        return _coerce_time(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class TimeRange(BaseModel):
    start_time: time
    end_time: time

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_clock_time(cls, value):
        return _coerce_time(value)


class DayTemplate(BaseModel):
    weekday: int = Field(ge=0, le=6)
    slots: list[TimeRange] = Field(min_length=1)


class WeeklyTemplateRequest(BaseModel):
    start_date: date
    end_date: date
    days: list[DayTemplate] = Field(min_length=1)

    @model_validator(mode='after')
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError('end_date must not be before start_date.')
        if (self.end_date - self.start_date).days > MAX_TEMPLATE_DAYS:
            raise ValueError(f'A template can cover at most {MAX_TEMPLATE_DAYS} days.')
        return self

    def as_mapping(self) -> dict[int, list[tuple[time, time]]]:
        mapping: dict[int, list[tuple[time, time]]] = {}
        for day in self.days:
            mapping.setdefault(day.weekday, []).extend(
                (slot.start_time, slot.end_time) for slot in day.slots
            )
        return mapping


class SlotResponse(BaseModel):
    id: int
    provider_id: int
    date: date
    start_time: str
    end_time: str
    is_available: bool
    reason: str | None = None

    @classmethod
    def from_slot(cls, slot: AvailabilitySlot) -> 'SlotResponse':
        return cls(
            id=slot.id,
            provider_id=slot.provider_id,
            date=slot.date,
            start_time=format_time(slot.start_time),
            end_time=format_time(slot.end_time),
            is_available=slot.is_available,
            reason=slot.reason,
        )


class SkippedSlotResponse(BaseModel):
    date: date
    start_time: str
    end_time: str
    reason: str

    @classmethod
    def from_skipped(cls, skipped: SkippedSlot) -> 'SkippedSlotResponse':
        return cls(
            date=skipped.date,
            start_time=format_time(skipped.start_time),
            end_time=format_time(skipped.end_time),
            reason=skipped.reason,
        )


class WeeklyTemplateResponse(BaseModel):
    created: list[SlotResponse]
    skipped: list[SkippedSlotResponse]


class DeletedSlotsResponse(BaseModel):
    deleted: int


class AvailabilityCheckResponse(BaseModel):
    provider_id: int
    date: date
    start_time: str
    end_time: str
    is_available: bool


@router.post('/slots', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(
    data: CreateSlotRequest,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        slot = AvailabilityService(db, clock).create_slot(
            actor.id,
            data.date,
            data.start_time,
            data.end_time,
            is_available=data.is_available,
            reason=data.reason,
        )
        return SlotResponse.from_slot(slot)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/slots', response_model=list[SlotResponse])
def list_my_slots(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        slots = AvailabilityService(db, clock).list_slots(actor.id, start_date, end_date)
        return [SlotResponse.from_slot(slot) for slot in slots]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/providers/{provider_id}/slots', response_model=list[SlotResponse])
def list_provider_slots(
    provider_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    del actor
    ensure_database_ready()

    try:
        start = start_date or clock.today()
        slots = AvailabilityService(db, clock).list_slots(provider_id, start, end_date)
        return [SlotResponse.from_slot(slot) for slot in slots if slot.is_available]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/slots/{slot_id}', response_model=SlotResponse)
def update_slot(
    slot_id: int,
    data: UpdateSlotRequest,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    changes = data.model_dump(exclude_unset=True, exclude={'start_time', 'end_time', 'is_available'})

    try:
        slot = AvailabilityService(db, clock).update_slot(
            slot_id,
            actor.id,
            start=data.start_time,
            end=data.end_time,
            is_available=data.is_available,
            **changes,
        )
        return SlotResponse.from_slot(slot)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/slots/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
    slot_id: int,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        AvailabilityService(db, clock).delete_slot(slot_id, actor.id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete('/slots', response_model=DeletedSlotsResponse)
def delete_slots_for_date(
    slot_date: date = Query(..., alias='date'),
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        deleted = AvailabilityService(db, clock).delete_slots_for_date(actor.id, slot_date)
        return DeletedSlotsResponse(deleted=deleted)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/weekly', response_model=WeeklyTemplateResponse, status_code=status.HTTP_201_CREATED)
def apply_weekly_template(
    data: WeeklyTemplateRequest,
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        created, skipped = AvailabilityService(db, clock).apply_weekly_template(
            actor.id,
            data.start_date,
            data.end_date,
            data.as_mapping(),
        )
        return WeeklyTemplateResponse(
            created=[SlotResponse.from_slot(slot) for slot in created],
            skipped=[SkippedSlotResponse.from_skipped(item) for item in skipped],
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/check', response_model=AvailabilityCheckResponse)
def check_availability(
    provider_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    start_time: str = Query(...),
    end_time: str = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    del actor

    try:
        start = parse_time(start_time)
        end = parse_time(end_time)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    ensure_database_ready()

    try:
        is_available = AvailabilityService(db, clock).is_within_availability(provider_id, slot_date, start, end)
        return AvailabilityCheckResponse(
            provider_id=provider_id,
            date=slot_date,
            start_time=format_time(start),
            end_time=format_time(end),
            is_available=is_available,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
