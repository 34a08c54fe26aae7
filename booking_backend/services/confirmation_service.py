import logging

from sqlalchemy.orm import Session

from booking_backend.core.actors import Role
from booking_backend.core.errors import InvalidCodeError, InvalidTransitionError
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.services.appointment_state import CLIENT_CANCELLABLE_STATUSES, validate_transition
from booking_backend.services.booking_service import BookingService, require_role
from booking_backend.services.confirmation_codes import codes_match, generate_code

logger = logging.getLogger(__name__)


class ConfirmationService:
    """One-time codes the client hands to the provider to start a service.

    There is no attempt counter here; throttling repeated guesses belongs to
    the phone verification collaborator.
    """

    def __init__(self, db: Session, booking: BookingService | None = None):
        self.db = db
        self.booking = booking or BookingService(db)

    def start_with_code(
        self,
        appointment_id: int,
        provider_id: int,
        code: str,
        role: Role | str = Role.PROVIDER,
    ) -> Appointment:
        require_role(role, Role.PROVIDER, 'start appointments')

        def mutate(appointment: Appointment) -> list:
            validate_transition(appointment.status, AppointmentStatus.IN_PROGRESS)
            if not codes_match(appointment.confirmation_code, code):
                logger.warning('Invalid confirmation code submitted for appointment %s', appointment_id)
                raise InvalidCodeError(appointment_id=appointment_id)

            appointment.status = AppointmentStatus.IN_PROGRESS.value
            return []

        appointment = self.booking.change(appointment_id, mutate, provider_id=provider_id)
        logger.info('Appointment %s started by provider %s', appointment_id, provider_id)
        return appointment

    def regenerate_code(
        self,
        appointment_id: int,
        client_id: int,
        role: Role | str = Role.CLIENT,
    ) -> Appointment:
        require_role(role, Role.CLIENT, 'request a new confirmation code')
        length = self.booking.settings.confirmation_code_length

        def mutate(appointment: Appointment) -> list:
            status = AppointmentStatus(appointment.status)
            if status not in CLIENT_CANCELLABLE_STATUSES:
                raise InvalidTransitionError(
                    f'A new code cannot be issued for a {status.value} appointment.',
                    current_status=status.value,
                )
            appointment.confirmation_code = generate_code(length)
            return []

        appointment = self.booking.change(appointment_id, mutate, client_id=client_id)
        logger.info('Confirmation code reissued for appointment %s', appointment_id)
        return appointment
