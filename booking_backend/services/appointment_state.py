from booking_backend.core.errors import InvalidTransitionError
from booking_backend.models.appointment import AppointmentStatus

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Appointments in these states no longer hold the provider's time.
RELEASED_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})

CLIENT_CANCELLABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


def is_terminal(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES


def can_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> bool:
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]


def validate_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> None:
    current_status = AppointmentStatus(current)
    target_status = AppointmentStatus(target)

    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(
            f'Invalid status transition: {current_status.value} -> {target_status.value}.',
            current_status=current_status.value,
            target_status=target_status.value,
        )
