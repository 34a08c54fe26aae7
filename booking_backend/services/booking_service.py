import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from booking_backend.core.actors import Role
from booking_backend.core.clock import Clock
from booking_backend.core.config import SchedulingSettings
from booking_backend.core.errors import (
    ActorSuspendedError,
    AlreadyTerminalError,
    BookingError,
    CancellationWindowClosedError,
    InvalidIntervalError,
    InvalidTransitionError,
    MissingReasonError,
    NotFoundError,
    OutsideAvailabilityError,
    PastScheduleError,
    PermissionDeniedError,
    ServiceNotFoundError,
    SlotConflictError,
)
from booking_backend.core.locks import appointment_locks, provider_locks
from booking_backend.core.time_utils import format_date, format_time, hours_until, local_interval, to_utc_naive
from booking_backend.models.appointment import (
    Appointment,
    AppointmentCancellation,
    AppointmentConfirmation,
    AppointmentStatus,
    CancellationType,
)
from booking_backend.models.catalog import Provider
from booking_backend.services.appointment_state import (
    CLIENT_CANCELLABLE_STATUSES,
    RELEASED_STATUSES,
    is_terminal,
    validate_transition,
)
from booking_backend.services.availability_service import AvailabilityService
from booking_backend.services.catalog_service import ServiceCatalog
from booking_backend.services.confirmation_codes import generate_code
from booking_backend.services.reputation_service import ReputationEvent, ReputationService

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_MINUTES = 24 * 60

ReputationUpdate = tuple[Role, int, ReputationEvent]


def is_transient_database_error(exc: OperationalError) -> bool:
    orig = getattr(exc, 'orig', None)
    pgcode = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if pgcode in {'40001', '40P01'}:
        return True
    message = str(exc).lower()
    return (
        'deadlock detected' in message
        or 'could not serialize' in message
        or 'database is locked' in message
    )


def require_role(role: Role | str, expected: Role, action: str) -> None:
    if Role(role) != expected:
        raise PermissionDeniedError(f'Only {expected.value}s can {action}.', role=Role(role).value)


def appointment_end(appointment: Appointment) -> datetime:
    return appointment.scheduled_start + timedelta(minutes=appointment.duration_minutes)


class BookingService:
    """Creates appointments and drives them through their lifecycle.

    Double booking is prevented by holding a per-provider lock (and a row lock
    on the provider where the database supports it) across the conflict check
    and the insert. Status changes are serialized per appointment. Reputation
    events are sent only after the status change has been committed.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock | None = None,
        settings: SchedulingSettings | None = None,
        catalog: ServiceCatalog | None = None,
        availability: AvailabilityService | None = None,
        reputation: ReputationService | None = None,
    ):
        self.db = db
        self.settings = settings or SchedulingSettings()
        self.clock = clock or Clock(self.settings.timezone)
        self.catalog = catalog or ServiceCatalog(db)
        self.availability = availability or AvailabilityService(db, self.clock)
        self.reputation = reputation or ReputationService(db, self.clock, self.settings)

    # Creation

    def find_conflict(
        self,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> Appointment | None:
        query = self.db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.notin_([status.value for status in RELEASED_STATUSES]),
            Appointment.scheduled_start < end,
            Appointment.scheduled_start > start - timedelta(minutes=MAX_APPOINTMENT_MINUTES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)

        for candidate in query.order_by(Appointment.scheduled_start.asc()).all():
            if appointment_end(candidate) > start:
                return candidate
        return None

    def _ensure_not_suspended(self, kind: Role, actor_id: int) -> None:
        if self.reputation.is_suspended(kind, actor_id):
            raise ActorSuspendedError(
                f'This {kind.value} account is currently suspended.',
                actor_kind=kind.value,
                actor_id=actor_id,
            )

    def _ensure_within_availability(self, provider_id: int, start: datetime, duration_minutes: int) -> None:
        projected = local_interval(start, duration_minutes, self.clock.zone)
        if projected is not None:
            slot_date, local_start, local_end = projected
            if self.availability.is_within_availability(provider_id, slot_date, local_start, local_end):
                return
            raise OutsideAvailabilityError(
                date=format_date(slot_date),
                start_time=format_time(local_start),
                end_time=format_time(local_end),
            )
        raise OutsideAvailabilityError('Appointments cannot span midnight.')

    def _lock_provider_row(self, provider_id: int) -> None:
        self.db.query(Provider.id).filter(Provider.id == provider_id).with_for_update().first()

    def create_appointment(
        self,
        client_id: int,
        service_id: int,
        scheduled_start: datetime,
        notes: str | None = None,
        role: Role | str = Role.CLIENT,
    ) -> Appointment:
        require_role(role, Role.CLIENT, 'book appointments')

        entry = self.catalog.get_entry(service_id)
        if entry is None or not entry.is_active:
            raise ServiceNotFoundError(service_id=service_id)

        start = to_utc_naive(scheduled_start)
        if start <= self.clock.now():
            raise PastScheduleError(scheduled_start=start.isoformat())

        if not 0 < entry.duration_minutes <= MAX_APPOINTMENT_MINUTES:
            raise InvalidIntervalError('Service duration is out of range.', duration_minutes=entry.duration_minutes)
        end = start + timedelta(minutes=entry.duration_minutes)

        if self.settings.block_suspended_actors:
            self._ensure_not_suspended(Role.CLIENT, client_id)
            self._ensure_not_suspended(Role.PROVIDER, entry.provider_id)

        if self.settings.require_availability:
            self._ensure_within_availability(entry.provider_id, start, entry.duration_minutes)

        attempts = max(1, self.settings.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                with provider_locks.hold(entry.provider_id):
                    self._lock_provider_row(entry.provider_id)

                    conflict = self.find_conflict(entry.provider_id, start, end)
                    if conflict is not None:
                        self.db.rollback()
                        logger.warning(
                            'Booking rejected for provider %s at %s: overlaps appointment %s',
                            entry.provider_id, start.isoformat(), conflict.id,
                        )
                        raise SlotConflictError(
                            provider_id=entry.provider_id,
                            conflicting_start=conflict.scheduled_start.isoformat(),
                            conflicting_end=appointment_end(conflict).isoformat(),
                        )

                    appointment = Appointment(
                        client_id=client_id,
                        provider_id=entry.provider_id,
                        service_id=entry.service_id,
                        service_name=entry.name,
                        price_amount=entry.price,
                        duration_minutes=entry.duration_minutes,
                        scheduled_start=start,
                        status=AppointmentStatus.PENDING.value,
                        notes=notes,
                        confirmation_code=generate_code(self.settings.confirmation_code_length),
                    )
                    self.db.add(appointment)
                    self.db.commit()
            except OperationalError as exc:
                self.db.rollback()
                if attempt == attempts or not is_transient_database_error(exc):
                    raise
                logger.warning('Transient database error while booking (attempt %s), retrying', attempt)
                continue

            self.db.refresh(appointment)
            logger.info('Appointment %s created for client %s', appointment.id, client_id)
            return appointment

    # Transitions

    def _load(
        self,
        appointment_id: int,
        provider_id: int | None = None,
        client_id: int | None = None,
        for_update: bool = False,
    ) -> Appointment:
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if provider_id is not None:
            query = query.filter(Appointment.provider_id == provider_id)
        if client_id is not None:
            query = query.filter(Appointment.client_id == client_id)
        if for_update:
            query = query.with_for_update()

        appointment = query.populate_existing().first()
        if appointment is None:
            raise NotFoundError('Appointment not found.', appointment_id=appointment_id)
        return appointment

    def change(
        self,
        appointment_id: int,
        mutate: Callable[[Appointment], list[ReputationUpdate]],
        provider_id: int | None = None,
        client_id: int | None = None,
    ) -> Appointment:
        """Apply ``mutate`` to one appointment under its lock and commit.

        ``mutate`` validates first and raises ``BookingError`` before touching
        anything; it returns the reputation updates to send once committed.
        """
        attempts = max(1, self.settings.max_retries)
        for attempt in range(1, attempts + 1):
            with appointment_locks.hold(appointment_id):
                appointment = self._load(appointment_id, provider_id, client_id, for_update=True)
                try:
                    updates = mutate(appointment)
                    self.db.commit()
                except BookingError:
                    self.db.rollback()
                    raise
                except StaleDataError:
                    # Changed by another process since it was loaded.
                    self.db.rollback()
                    if attempt == attempts:
                        raise InvalidTransitionError('The appointment was modified concurrently.')
                    continue

            self.db.refresh(appointment)
            self._send_reputation_updates(updates)
            return appointment

    def _send_reputation_updates(self, updates: list[ReputationUpdate]) -> None:
        for kind, actor_id, event in updates:
            self.reputation.apply_event(kind, actor_id, event)

    def _record_confirmation(self, appointment: Appointment, actor_id: int) -> None:
        now = self.clock.now()
        if appointment.confirmation is None:
            appointment.confirmation = AppointmentConfirmation(confirmed_by_actor_id=actor_id, confirmed_at=now)
        else:
            appointment.confirmation.confirmed_by_actor_id = actor_id
            appointment.confirmation.confirmed_at = now

    def _record_cancellation(
        self,
        appointment: Appointment,
        actor_id: int,
        reason: str,
        cancellation_type: CancellationType,
    ) -> None:
        now = self.clock.now()
        if appointment.cancellation is None:
            appointment.cancellation = AppointmentCancellation(
                cancelled_by_actor_id=actor_id,
                cancelled_at=now,
                reason=reason,
                cancellation_type=cancellation_type.value,
            )
        else:
            appointment.cancellation.cancelled_by_actor_id = actor_id
            appointment.cancellation.cancelled_at = now
            appointment.cancellation.reason = reason
            appointment.cancellation.cancellation_type = cancellation_type.value

    def _is_early(self, appointment: Appointment) -> bool:
        remaining = hours_until(appointment.scheduled_start, self.clock.now())
        return remaining >= self.settings.cancellation_window_hours

    def update_status(
        self,
        appointment_id: int,
        provider_id: int,
        target_status: AppointmentStatus | str,
        cancellation_reason: str | None = None,
        role: Role | str = Role.PROVIDER,
    ) -> Appointment:
        require_role(role, Role.PROVIDER, 'change appointment status')
        target = AppointmentStatus(target_status)
        reason = (cancellation_reason or '').strip()

        def mutate(appointment: Appointment) -> list[ReputationUpdate]:
            validate_transition(appointment.status, target)
            if target == AppointmentStatus.CANCELLED and not reason:
                raise MissingReasonError()

            updates: list[ReputationUpdate] = []
            if target == AppointmentStatus.CONFIRMED:
                self._record_confirmation(appointment, provider_id)
            elif target == AppointmentStatus.CANCELLED:
                self._record_cancellation(appointment, provider_id, reason, CancellationType.PROVIDER)
                event = (
                    ReputationEvent.CANCELLED_EARLY
                    if self._is_early(appointment)
                    else ReputationEvent.CANCELLED_LATE_REJECTED
                )
                updates.append((Role.PROVIDER, provider_id, event))
            elif target == AppointmentStatus.COMPLETED:
                updates.append((Role.CLIENT, appointment.client_id, ReputationEvent.COMPLETED))
                updates.append((Role.PROVIDER, provider_id, ReputationEvent.COMPLETED))
            elif target == AppointmentStatus.NO_SHOW:
                updates.append((Role.CLIENT, appointment.client_id, ReputationEvent.NO_SHOW))
                updates.append((Role.PROVIDER, provider_id, ReputationEvent.NO_SHOW_REPORTED))

            appointment.status = target.value
            return updates

        appointment = self.change(appointment_id, mutate, provider_id=provider_id)
        logger.info('Appointment %s moved to %s by provider %s', appointment_id, target.value, provider_id)
        return appointment

    def cancel_by_client(
        self,
        appointment_id: int,
        client_id: int,
        reason: str | None,
        role: Role | str = Role.CLIENT,
    ) -> Appointment:
        require_role(role, Role.CLIENT, 'cancel their appointments')
        cleaned_reason = (reason or '').strip()
        window = self.settings.cancellation_window_hours

        def mutate(appointment: Appointment) -> list[ReputationUpdate]:
            status = AppointmentStatus(appointment.status)
            if is_terminal(status):
                raise AlreadyTerminalError(
                    f'This appointment is already {status.value}.', status=status.value,
                )
            if status not in CLIENT_CANCELLABLE_STATUSES:
                raise InvalidTransitionError(
                    f'Invalid status transition: {status.value} -> cancelled.',
                    current_status=status.value,
                    target_status=AppointmentStatus.CANCELLED.value,
                )
            if not cleaned_reason:
                raise MissingReasonError()

            remaining = hours_until(appointment.scheduled_start, self.clock.now())
            if remaining < window:
                raise CancellationWindowClosedError(
                    f'Appointments cannot be cancelled less than {window} hours before they start.',
                    hours_until_start=round(remaining, 2),
                )

            self._record_cancellation(appointment, client_id, cleaned_reason, CancellationType.CLIENT)
            appointment.status = AppointmentStatus.CANCELLED.value
            return [(Role.CLIENT, client_id, ReputationEvent.CANCELLED_EARLY)]

        appointment = self.change(appointment_id, mutate, client_id=client_id)
        logger.info('Appointment %s cancelled by client %s', appointment_id, client_id)
        return appointment
