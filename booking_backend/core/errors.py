"""Errors raised by the scheduling core.

Every error is detected before anything is written. Routes turn them into
``HTTPException`` using ``status_code`` and ``as_detail()``.
"""

from typing import Any


class BookingError(Exception):
    code = 'booking_error'
    status_code = 400
    default_message = 'Booking request rejected.'

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_detail(self) -> dict[str, Any]:
        return {'code': self.code, 'message': self.message, **self.details}


class NotFoundError(BookingError):
    code = 'not_found'
    status_code = 404
    default_message = 'Resource not found.'


class ServiceNotFoundError(NotFoundError):
    code = 'service_not_found'
    default_message = 'Service not found or inactive.'


class InvalidIntervalError(BookingError):
    code = 'invalid_interval'
    default_message = 'End time must be after start time.'


class PastDateError(BookingError):
    code = 'past_date'
    default_message = 'Slots cannot be created in the past.'


class PastScheduleError(BookingError):
    code = 'past_schedule'
    default_message = 'Appointments must be scheduled in the future.'


class OverlapConflictError(BookingError):
    code = 'overlap_conflict'
    status_code = 409
    default_message = 'This slot overlaps an existing slot.'


class SlotConflictError(BookingError):
    code = 'slot_conflict'
    status_code = 409
    default_message = 'This time is no longer available.'


class OutsideAvailabilityError(BookingError):
    code = 'outside_availability'
    status_code = 409
    default_message = 'The provider is not available at this time.'


class InvalidTransitionError(BookingError):
    code = 'invalid_transition'
    default_message = 'Invalid status transition.'


class MissingReasonError(BookingError):
    code = 'missing_reason'
    default_message = 'A cancellation reason is required.'


class CancellationWindowClosedError(BookingError):
    code = 'cancellation_window_closed'
    default_message = 'Appointments cannot be cancelled less than 24 hours before they start.'


class InvalidCodeError(BookingError):
    code = 'invalid_code'
    default_message = 'Invalid confirmation code.'


class AlreadyTerminalError(BookingError):
    code = 'already_terminal'
    default_message = 'This appointment is already closed.'


class PermissionDeniedError(BookingError):
    code = 'permission_denied'
    status_code = 403
    default_message = 'This action is not allowed for your role.'


class ActorSuspendedError(BookingError):
    code = 'actor_suspended'
    status_code = 403
    default_message = 'This account is currently suspended.'
