from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_actor
from booking_backend.core.actors import Actor, Role
from booking_backend.core.clock import Clock
from booking_backend.core.config import SchedulingSettings
from booking_backend.core.errors import BookingError
from booking_backend.database import get_db
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.routes.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_clock,
    get_settings,
    to_http_exception,
)
from booking_backend.services.appointment_query_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AppointmentQueryService,
)
from booking_backend.services.booking_service import BookingService, appointment_end
from booking_backend.services.confirmation_service import ConfirmationService

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600
MAX_REASON_LENGTH = 500
MAX_CODE_LENGTH = 12


class CreateAppointmentRequest(BaseModel):
    service_id: int = Field(ge=1)
    scheduled_start: datetime
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class UpdateStatusRequest(BaseModel):
    status: AppointmentStatus
    cancellation_reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)


class CancelAppointmentRequest(BaseModel):
    reason: str = Field(max_length=MAX_REASON_LENGTH)


class StartAppointmentRequest(BaseModel):
    code: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized.isdigit() or len(normalized) > MAX_CODE_LENGTH:
            raise ValueError(f'The code must contain only digits, at most {MAX_CODE_LENGTH}.')
        return normalized


class ServiceSummary(BaseModel):
    id: int
    name: str


class ProviderSummary(BaseModel):
    id: int
    business_name: str | None = None
    location: str | None = None


class AppointmentSummaryResponse(BaseModel):
    id: int
    client_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    status: str
    price_amount: int
    duration_minutes: int
    service: ServiceSummary
    provider: ProviderSummary
    created_at: datetime | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> 'AppointmentSummaryResponse':
        provider = appointment.provider
        return cls(
            id=appointment.id,
            client_id=appointment.client_id,
            scheduled_start=appointment.scheduled_start,
            scheduled_end=appointment_end(appointment),
            status=appointment.status,
            price_amount=appointment.price_amount,
            duration_minutes=appointment.duration_minutes,
            service=ServiceSummary(id=appointment.service_id, name=appointment.service_name),
            provider=ProviderSummary(
                id=appointment.provider_id,
                business_name=provider.business_name if provider else None,
                location=provider.location if provider else None,
            ),
            created_at=appointment.created_at,
        )


class ConfirmationResponse(BaseModel):
    confirmed_by_actor_id: int
    confirmed_at: datetime


class CancellationResponse(BaseModel):
    cancelled_by_actor_id: int
    cancelled_at: datetime
    reason: str
    cancellation_type: str


class AppointmentDetailResponse(AppointmentSummaryResponse):
    notes: str | None = None
    confirmation_code: str | None = None
    confirmation: ConfirmationResponse | None = None
    cancellation: CancellationResponse | None = None

    @classmethod
    def from_appointment_for(cls, appointment: Appointment, actor: Actor) -> 'AppointmentDetailResponse':
        summary = AppointmentSummaryResponse.from_appointment(appointment)
        confirmation = appointment.confirmation
        cancellation = appointment.cancellation
        return cls(
            **summary.model_dump(),
            notes=appointment.notes,
            # The provider must get the code from the client in person.
            confirmation_code=appointment.confirmation_code if actor.role != Role.PROVIDER else None,
            confirmation=ConfirmationResponse(
                confirmed_by_actor_id=confirmation.confirmed_by_actor_id,
                confirmed_at=confirmation.confirmed_at,
            ) if confirmation else None,
            cancellation=CancellationResponse(
                cancelled_by_actor_id=cancellation.cancelled_by_actor_id,
                cancelled_at=cancellation.cancelled_at,
                reason=cancellation.reason,
                cancellation_type=cancellation.cancellation_type,
            ) if cancellation else None,
        )


class PageMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class AppointmentPageResponse(BaseModel):
    data: list[AppointmentSummaryResponse]
    meta: PageMeta


class ConfirmationCodeResponse(BaseModel):
    appointment_id: int
    code: str


def build_booking_service(db: Session, clock: Clock, settings: SchedulingSettings) -> BookingService:
    return BookingService(db, clock=clock, settings=settings)


@router.post('', response_model=AppointmentSummaryResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    ensure_database_ready()

    try:
        appointment = build_booking_service(db, clock, settings).create_appointment(
            actor.id,
            data.service_id,
            data.scheduled_start,
            notes=data.notes,
            role=actor.role,
        )
        return AppointmentSummaryResponse.from_appointment(appointment)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('', response_model=AppointmentPageResponse)
def list_appointments(
    status_filter: AppointmentStatus | None = Query(default=None, alias='status'),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = AppointmentQueryService(db).list_appointments(
            actor.id,
            actor.role,
            status=status_filter,
            start=start,
            end=end,
            page=page,
            page_size=page_size,
        )
        return AppointmentPageResponse(
            data=[AppointmentSummaryResponse.from_appointment(item) for item in result.items],
            meta=PageMeta(
                total=result.total,
                page=result.page,
                page_size=result.page_size,
                total_pages=result.total_pages,
            ),
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentDetailResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = AppointmentQueryService(db).get_appointment(appointment_id, actor.id, actor.role)
        return AppointmentDetailResponse.from_appointment_for(appointment, actor)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/status', response_model=AppointmentSummaryResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    ensure_database_ready()

    try:
        appointment = build_booking_service(db, clock, settings).update_status(
            appointment_id,
            actor.id,
            data.status,
            cancellation_reason=data.cancellation_reason,
            role=actor.role,
        )
        return AppointmentSummaryResponse.from_appointment(appointment)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/cancel', response_model=AppointmentSummaryResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    ensure_database_ready()

    try:
        appointment = build_booking_service(db, clock, settings).cancel_by_client(
            appointment_id,
            actor.id,
            data.reason,
            role=actor.role,
        )
        return AppointmentSummaryResponse.from_appointment(appointment)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/start', response_model=AppointmentSummaryResponse)
def start_appointment(
    appointment_id: int,
    data: StartAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    ensure_database_ready()

    try:
        booking = build_booking_service(db, clock, settings)
        appointment = ConfirmationService(db, booking).start_with_code(
            appointment_id,
            actor.id,
            data.code,
            role=actor.role,
        )
        return AppointmentSummaryResponse.from_appointment(appointment)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/code', response_model=ConfirmationCodeResponse)
def regenerate_confirmation_code(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    ensure_database_ready()

    try:
        booking = build_booking_service(db, clock, settings)
        appointment = ConfirmationService(db, booking).regenerate_code(appointment_id, actor.id, role=actor.role)
        return ConfirmationCodeResponse(appointment_id=appointment.id, code=appointment.confirmation_code)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
