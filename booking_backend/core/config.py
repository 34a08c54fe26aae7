import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

SCHEDULING_TIMEZONE = os.getenv("SCHEDULING_TIMEZONE", "UTC")
CLIENT_CANCELLATION_WINDOW_HOURS = int(os.getenv("CLIENT_CANCELLATION_WINDOW_HOURS", "24"))
SUSPENSION_DAYS = int(os.getenv("SUSPENSION_DAYS", "7"))
CONFIRMATION_CODE_LENGTH = int(os.getenv("CONFIRMATION_CODE_LENGTH", "4"))
REQUIRE_AVAILABILITY = _get_bool(os.getenv("REQUIRE_AVAILABILITY"), default=True)
BLOCK_SUSPENDED_ACTORS = _get_bool(os.getenv("BLOCK_SUSPENDED_ACTORS"), default=True)
BOOKING_MAX_RETRIES = int(os.getenv("BOOKING_MAX_RETRIES", "3"))


@dataclass(frozen=True)
class SchedulingSettings:
    """Business knobs handed to the scheduling services at construction."""

    timezone: str = "UTC"
    cancellation_window_hours: int = 24
    suspension_days: int = 7
    confirmation_code_length: int = 4
    require_availability: bool = True
    block_suspended_actors: bool = True
    max_retries: int = 3


def load_scheduling_settings() -> SchedulingSettings:
    return SchedulingSettings(
        timezone=SCHEDULING_TIMEZONE,
        cancellation_window_hours=CLIENT_CANCELLATION_WINDOW_HOURS,
        suspension_days=SUSPENSION_DAYS,
        confirmation_code_length=CONFIRMATION_CODE_LENGTH,
        require_availability=REQUIRE_AVAILABILITY,
        block_suspended_actors=BLOCK_SUSPENDED_ACTORS,
        max_retries=BOOKING_MAX_RETRIES,
    )


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if CONFIRMATION_CODE_LENGTH < 4:
        raise RuntimeError("CONFIRMATION_CODE_LENGTH must be at least 4.")
