from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import require_roles
from booking_backend.core.actors import Actor, Role
from booking_backend.core.clock import Clock
from booking_backend.core.errors import BookingError
from booking_backend.database import get_db
from booking_backend.routes.appointment_routes import AppointmentSummaryResponse
from booking_backend.routes.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_clock,
    to_http_exception,
)
from booking_backend.services.appointment_query_service import (
    DEFAULT_DASHBOARD_LIMIT,
    MAX_DASHBOARD_LIMIT,
    AppointmentQueryService,
    DashboardPeriod,
)

router = APIRouter(tags=['dashboard'])

require_provider = require_roles(Role.PROVIDER)


class StatisticsResponse(BaseModel):
    total_bookings: int
    total_completed: int
    total_cancelled: int
    completion_rate: int


class TodayResponse(BaseModel):
    appointments: list[AppointmentSummaryResponse]
    count: int


class DashboardSummaryResponse(BaseModel):
    statistics: StatisticsResponse
    today: TodayResponse
    pending_count: int


class PeriodResponse(BaseModel):
    start_date: date
    end_date: date


class DailyRevenueResponse(BaseModel):
    date: date
    revenue: int
    count: int


class RevenueStatsResponse(BaseModel):
    total_revenue: int
    appointments_count: int
    average_per_appointment: int
    period: PeriodResponse
    chart: list[DailyRevenueResponse]


class StatusStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    period: PeriodResponse


class TopServiceResponse(BaseModel):
    service_id: int
    name: str
    bookings_count: int
    total_revenue: int


@router.get('/summary', response_model=DashboardSummaryResponse)
def get_dashboard_summary(
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        summary = AppointmentQueryService(db, clock).dashboard_summary(actor.id)
        return DashboardSummaryResponse(
            statistics=StatisticsResponse(
                total_bookings=summary.statistics.total_bookings,
                total_completed=summary.statistics.total_completed,
                total_cancelled=summary.statistics.total_cancelled,
                completion_rate=summary.statistics.completion_rate,
            ),
            today=TodayResponse(
                appointments=[AppointmentSummaryResponse.from_appointment(item) for item in summary.today],
                count=len(summary.today),
            ),
            pending_count=summary.pending_count,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/revenue', response_model=RevenueStatsResponse)
def get_revenue_stats(
    period: DashboardPeriod = Query(default=DashboardPeriod.MONTH),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        stats = AppointmentQueryService(db, clock).revenue_stats(actor.id, period, start_date, end_date)
        return RevenueStatsResponse(
            total_revenue=stats.total_revenue,
            appointments_count=stats.appointments_count,
            average_per_appointment=stats.average_per_appointment,
            period=PeriodResponse(start_date=stats.start_date, end_date=stats.end_date),
            chart=[
                DailyRevenueResponse(date=day.date, revenue=day.revenue, count=day.count)
                for day in stats.chart
            ],
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/appointments/stats', response_model=StatusStatsResponse)
def get_status_stats(
    period: DashboardPeriod = Query(default=DashboardPeriod.MONTH),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        stats = AppointmentQueryService(db, clock).status_stats(actor.id, period, start_date, end_date)
        return StatusStatsResponse(
            total=stats.total,
            by_status=stats.by_status,
            period=PeriodResponse(start_date=stats.start_date, end_date=stats.end_date),
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/appointments/upcoming', response_model=list[AppointmentSummaryResponse])
def get_upcoming_appointments(
    limit: int = Query(default=DEFAULT_DASHBOARD_LIMIT, ge=1, le=MAX_DASHBOARD_LIMIT),
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        appointments = AppointmentQueryService(db, clock).upcoming_appointments(actor.id, limit)
        return [AppointmentSummaryResponse.from_appointment(item) for item in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/services/top', response_model=list[TopServiceResponse])
def get_top_services(
    period: DashboardPeriod = Query(default=DashboardPeriod.MONTH),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=DEFAULT_DASHBOARD_LIMIT, ge=1, le=MAX_DASHBOARD_LIMIT),
    actor: Actor = Depends(require_provider),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        services = AppointmentQueryService(db, clock).top_services(actor.id, period, start_date, end_date, limit)
        return [
            TopServiceResponse(
                service_id=item.service_id,
                name=item.name,
                bookings_count=item.bookings_count,
                total_revenue=item.total_revenue,
            )
            for item in services
        ]
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
