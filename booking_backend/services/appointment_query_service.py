import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from booking_backend.core.actors import Role
from booking_backend.core.clock import Clock
from booking_backend.core.errors import InvalidIntervalError, NotFoundError, PermissionDeniedError
from booking_backend.core.time_utils import (
    format_date,
    iterate_dates,
    local_day_bounds,
    months_before,
    to_local,
    to_utc_naive,
)
from booking_backend.models.appointment import Appointment, AppointmentStatus

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

DEFAULT_DASHBOARD_LIMIT = 5
MAX_DASHBOARD_LIMIT = 50

TODAY_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS)
UPCOMING_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)
BOOKED_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED)


class DashboardPeriod(str, Enum):
    TODAY = 'today'
    WEEK = 'week'
    MONTH = 'month'
    YEAR = 'year'
    CUSTOM = 'custom'


@dataclass
class Page:
    items: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


@dataclass(frozen=True)
class ProviderStatistics:
    total_bookings: int
    total_completed: int
    total_cancelled: int
    completion_rate: int


@dataclass(frozen=True)
class DashboardSummary:
    statistics: ProviderStatistics
    today: list
    pending_count: int


@dataclass(frozen=True)
class DailyRevenue:
    date: date
    revenue: int
    count: int


@dataclass(frozen=True)
class RevenueStats:
    start_date: date
    end_date: date
    total_revenue: int
    appointments_count: int
    average_per_appointment: int
    chart: list[DailyRevenue]


@dataclass(frozen=True)
class StatusStats:
    start_date: date
    end_date: date
    total: int
    by_status: dict[str, int]


@dataclass(frozen=True)
class TopService:
    service_id: int
    name: str
    bookings_count: int
    total_revenue: int


def resolve_period(
    period: DashboardPeriod | str,
    today: date,
    start_date: date | None = None,
    end_date: date | None = None,
) -> tuple[date, date]:
    """Inclusive local date range covered by a dashboard period.

    A custom period without both dates falls back to the last month.
    """
    period = DashboardPeriod(period)
    if period == DashboardPeriod.TODAY:
        return today, today
    if period == DashboardPeriod.WEEK:
        return today - timedelta(days=7), today
    if period == DashboardPeriod.YEAR:
        return months_before(today, 12), today
    if period == DashboardPeriod.CUSTOM and start_date is not None and end_date is not None:
        if start_date > end_date:
            raise InvalidIntervalError(
                'The period end date must not be before its start date.',
                start_date=format_date(start_date),
                end_date=format_date(end_date),
            )
        return start_date, end_date
    return months_before(today, 1), today


def _check_limit(limit: int) -> None:
    if not 1 <= limit <= MAX_DASHBOARD_LIMIT:
        raise ValueError(f'limit must be between 1 and {MAX_DASHBOARD_LIMIT}')


class AppointmentQueryService:
    """Read side of appointments; never writes.

    Besides the owner listings it answers the provider dashboard: totals,
    today's agenda, revenue and status counts over a period, upcoming work and
    the most booked services. Dashboard days are local days in the clock's zone.
    """

    def __init__(self, db: Session, clock: Clock | None = None):
        self.db = db
        self.clock = clock or Clock()

    def list_appointments(
        self,
        actor_id: int,
        role: Role | str,
        status: AppointmentStatus | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        role = Role(role)
        if page < 1:
            raise ValueError('page must be at least 1')
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f'page_size must be between 1 and {MAX_PAGE_SIZE}')

        query = self.db.query(Appointment)
        if role == Role.CLIENT:
            query = query.filter(Appointment.client_id == actor_id)
            ordering = Appointment.scheduled_start.desc()
        elif role == Role.PROVIDER:
            query = query.filter(Appointment.provider_id == actor_id)
            ordering = Appointment.scheduled_start.asc()
        else:
            raise PermissionDeniedError('Only clients and providers have appointment lists.', role=role.value)

        if status is not None:
            query = query.filter(Appointment.status == AppointmentStatus(status).value)
        if start is not None:
            query = query.filter(Appointment.scheduled_start >= to_utc_naive(start))
        if end is not None:
            query = query.filter(Appointment.scheduled_start <= to_utc_naive(end))

        total = query.count()
        items = (
            query.options(joinedload(Appointment.provider))
            .order_by(ordering, Appointment.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return Page(items=items, total=total, page=page, page_size=page_size)

    def get_appointment(self, appointment_id: int, actor_id: int, role: Role | str) -> Appointment:
        role = Role(role)
        appointment = self.db.query(Appointment).options(
            joinedload(Appointment.provider),
            joinedload(Appointment.confirmation),
            joinedload(Appointment.cancellation),
        ).filter(Appointment.id == appointment_id).first()

        if appointment is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)

        is_client = role == Role.CLIENT and appointment.client_id == actor_id
        is_provider = role == Role.PROVIDER and appointment.provider_id == actor_id
        # Not owned reads as not found so ids cannot be guessed.
        if not (is_client or is_provider or role == Role.ADMIN):
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)

        return appointment

    # Provider dashboard

    def _provider_query(self, provider_id: int):
        return self.db.query(Appointment).filter(Appointment.provider_id == provider_id)

    def _in_local_days(self, query, first_day: date, last_day: date):
        lower, upper = local_day_bounds(first_day, last_day, self.clock.zone)
        return query.filter(Appointment.scheduled_start >= lower, Appointment.scheduled_start < upper)

    def _status_counts(self, query) -> dict[str, int]:
        counts = {status.value: 0 for status in AppointmentStatus}
        rows = query.with_entities(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status).all()
        for status, count in rows:
            counts[status] = count
        return counts

    def provider_statistics(self, provider_id: int) -> ProviderStatistics:
        counts = self._status_counts(self._provider_query(provider_id))
        total = sum(counts.values())
        completed = counts[AppointmentStatus.COMPLETED.value]
        return ProviderStatistics(
            total_bookings=total,
            total_completed=completed,
            total_cancelled=counts[AppointmentStatus.CANCELLED.value],
            completion_rate=round(completed / total * 100) if total else 0,
        )

    def today_appointments(self, provider_id: int) -> list[Appointment]:
        today = self.clock.today()
        query = self._in_local_days(self._provider_query(provider_id), today, today)
        return query.filter(
            Appointment.status.in_([status.value for status in TODAY_STATUSES]),
        ).order_by(Appointment.scheduled_start.asc(), Appointment.id.asc()).all()

    def pending_count(self, provider_id: int) -> int:
        return self._provider_query(provider_id).filter(
            Appointment.status == AppointmentStatus.PENDING.value,
        ).count()

    def dashboard_summary(self, provider_id: int) -> DashboardSummary:
        return DashboardSummary(
            statistics=self.provider_statistics(provider_id),
            today=self.today_appointments(provider_id),
            pending_count=self.pending_count(provider_id),
        )

    def revenue_stats(
        self,
        provider_id: int,
        period: DashboardPeriod | str = DashboardPeriod.MONTH,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> RevenueStats:
        first_day, last_day = resolve_period(period, self.clock.today(), start_date, end_date)
        rows = self._in_local_days(self._provider_query(provider_id), first_day, last_day).filter(
            Appointment.status == AppointmentStatus.COMPLETED.value,
        ).with_entities(Appointment.price_amount, Appointment.scheduled_start).all()

        per_day = {day: [0, 0] for day in iterate_dates(first_day, last_day)}
        for price_amount, scheduled_start in rows:
            bucket = per_day.get(to_local(scheduled_start, self.clock.zone).date())
            if bucket is not None:
                bucket[0] += price_amount
                bucket[1] += 1

        total_revenue = sum(price_amount for price_amount, _ in rows)
        return RevenueStats(
            start_date=first_day,
            end_date=last_day,
            total_revenue=total_revenue,
            appointments_count=len(rows),
            average_per_appointment=round(total_revenue / len(rows)) if rows else 0,
            chart=[DailyRevenue(date=day, revenue=revenue, count=count) for day, (revenue, count) in per_day.items()],
        )

    def status_stats(
        self,
        provider_id: int,
        period: DashboardPeriod | str = DashboardPeriod.MONTH,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> StatusStats:
        first_day, last_day = resolve_period(period, self.clock.today(), start_date, end_date)
        counts = self._status_counts(self._in_local_days(self._provider_query(provider_id), first_day, last_day))
        return StatusStats(start_date=first_day, end_date=last_day, total=sum(counts.values()), by_status=counts)

    def upcoming_appointments(self, provider_id: int, limit: int = DEFAULT_DASHBOARD_LIMIT) -> list[Appointment]:
        _check_limit(limit)
        return self._provider_query(provider_id).filter(
            Appointment.scheduled_start >= self.clock.now(),
            Appointment.status.in_([status.value for status in UPCOMING_STATUSES]),
        ).order_by(Appointment.scheduled_start.asc(), Appointment.id.asc()).limit(limit).all()

    def top_services(
        self,
        provider_id: int,
        period: DashboardPeriod | str = DashboardPeriod.MONTH,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = DEFAULT_DASHBOARD_LIMIT,
    ) -> list[TopService]:
        _check_limit(limit)
        first_day, last_day = resolve_period(period, self.clock.today(), start_date, end_date)
        bookings = func.count(Appointment.id)
        rows = self._in_local_days(self._provider_query(provider_id), first_day, last_day).filter(
            Appointment.status.in_([status.value for status in BOOKED_STATUSES]),
        ).with_entities(
            Appointment.service_id,
            func.max(Appointment.service_name),
            bookings,
            func.sum(Appointment.price_amount),
        ).group_by(Appointment.service_id).order_by(bookings.desc(), Appointment.service_id.asc()).limit(limit).all()

        return [
            TopService(service_id=service_id, name=name, bookings_count=count, total_revenue=revenue or 0)
            for service_id, name, count, revenue in rows
        ]
