from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core import config
from booking_backend.core.clock import Clock
from booking_backend.core.config import SchedulingSettings
from booking_backend.core.errors import BookingError
from booking_backend.database import ensure_scheduling_indexes

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def get_settings() -> SchedulingSettings:
    return config.load_scheduling_settings()


def get_clock() -> Clock:
    return Clock(config.SCHEDULING_TIMEZONE)


def to_http_exception(exc: BookingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.as_detail())


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_indexes()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
