import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.orm import Session

from booking_backend.core.clock import Clock
from booking_backend.core.errors import (
    BookingError,
    InvalidIntervalError,
    NotFoundError,
    OverlapConflictError,
    PastDateError,
)
from booking_backend.core.locks import provider_locks
from booking_backend.core.time_utils import (
    format_date,
    format_time,
    interval_contains,
    intervals_overlap,
    is_past_date,
    is_past_time_today,
    iterate_dates,
)
from booking_backend.models.availability import AvailabilitySlot
from booking_backend.models.catalog import Provider

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass(frozen=True)
class SkippedSlot:
    date: date
    start_time: time
    end_time: time
    reason: str


def describe_slot(slot: AvailabilitySlot) -> dict:
    return {
        'slot_id': slot.id,
        'date': format_date(slot.date),
        'start_time': format_time(slot.start_time),
        'end_time': format_time(slot.end_time),
        'is_available': bool(slot.is_available),
    }


class AvailabilityService:
    """Per-provider, per-date availability slots.

    Open slots never overlap each other, and neither do blocked ones. A blocked
    slot may sit inside an open one: it overrides that part of the day.
    Writes for one provider are serialized so the overlap check and the write
    happen as one step.
    """

    def __init__(self, db: Session, clock: Clock | None = None):
        self.db = db
        self.clock = clock or Clock()

    def _slots_on(self, provider_id: int, slot_date: date) -> list[AvailabilitySlot]:
        return self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.date == slot_date,
        ).order_by(AvailabilitySlot.start_time.asc()).all()

    @contextmanager
    def _provider_write(self, provider_id: int) -> Iterator[None]:
        with provider_locks.hold(provider_id):
            self.db.query(Provider.id).filter(Provider.id == provider_id).with_for_update().first()
            try:
                yield
            except BookingError:
                self.db.rollback()
                raise

    def validate_slot(
        self,
        provider_id: int,
        slot_date: date,
        start: time,
        end: time,
        is_available: bool = True,
        exclude_slot_id: int | None = None,
    ) -> None:
        if start >= end:
            raise InvalidIntervalError(start_time=format_time(start), end_time=format_time(end))

        if is_past_date(slot_date, self.clock.today()):
            raise PastDateError('Slots cannot be created on a past date.', date=format_date(slot_date))

        if is_past_time_today(slot_date, start, self.clock.local_now()):
            raise PastDateError(
                'This start time has already passed today.',
                date=format_date(slot_date),
                start_time=format_time(start),
            )

        for existing in self._slots_on(provider_id, slot_date):
            if existing.id == exclude_slot_id or bool(existing.is_available) != is_available:
                continue
            if intervals_overlap(start, end, existing.start_time, existing.end_time):
                raise OverlapConflictError(
                    f'This slot overlaps the existing slot '
                    f'{format_time(existing.start_time)}-{format_time(existing.end_time)}.',
                    conflicting_slot=describe_slot(existing),
                )

    def create_slot(
        self,
        provider_id: int,
        slot_date: date,
        start: time,
        end: time,
        is_available: bool = True,
        reason: str | None = None,
    ) -> AvailabilitySlot:
        with self._provider_write(provider_id):
            self.validate_slot(provider_id, slot_date, start, end, is_available=is_available)

            slot = AvailabilitySlot(
                provider_id=provider_id,
                date=slot_date,
                start_time=start,
                end_time=end,
                is_available=is_available,
                reason=reason,
            )
            self.db.add(slot)
            self.db.commit()

        self.db.refresh(slot)
        logger.info(
            'Slot %s created for provider %s on %s (%s-%s)',
            slot.id, provider_id, format_date(slot_date), format_time(start), format_time(end),
        )
        return slot

    def get_slot(self, slot_id: int, provider_id: int) -> AvailabilitySlot:
        slot = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.provider_id == provider_id,
        ).first()
        if slot is None:
            raise NotFoundError('Slot not found.', slot_id=slot_id)
        return slot

    def update_slot(
        self,
        slot_id: int,
        provider_id: int,
        start: time | None = None,
        end: time | None = None,
        is_available: bool | None = None,
        reason=_UNSET,
    ) -> AvailabilitySlot:
        with self._provider_write(provider_id):
            slot = self.get_slot(slot_id, provider_id)

            new_start = start if start is not None else slot.start_time
            new_end = end if end is not None else slot.end_time
            new_available = is_available if is_available is not None else bool(slot.is_available)
            self.validate_slot(
                provider_id, slot.date, new_start, new_end, is_available=new_available, exclude_slot_id=slot.id,
            )

            slot.start_time = new_start
            slot.end_time = new_end
            slot.is_available = new_available
            if reason is not _UNSET:
                slot.reason = reason

            self.db.commit()

        self.db.refresh(slot)
        logger.info('Slot %s updated for provider %s', slot.id, provider_id)
        return slot

    def delete_slot(self, slot_id: int, provider_id: int) -> bool:
        deleted = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.provider_id == provider_id,
        ).delete()
        self.db.commit()

        if deleted:
            logger.info('Slot %s deleted for provider %s', slot_id, provider_id)
        return bool(deleted)

    def delete_slots_for_date(self, provider_id: int, slot_date: date) -> int:
        deleted = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.date == slot_date,
        ).delete()
        self.db.commit()

        logger.info('%s slots deleted for provider %s on %s', deleted, provider_id, format_date(slot_date))
        return deleted

    def list_slots(
        self,
        provider_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[AvailabilitySlot]:
        query = self.db.query(AvailabilitySlot).filter(AvailabilitySlot.provider_id == provider_id)
        if start_date is not None:
            query = query.filter(AvailabilitySlot.date >= start_date)
        if end_date is not None:
            query = query.filter(AvailabilitySlot.date <= end_date)

        return query.order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()

    def is_within_availability(self, provider_id: int, slot_date: date, start: time, end: time) -> bool:
        if start >= end:
            return False

        slots = self._slots_on(provider_id, slot_date)

        for slot in slots:
            if not slot.is_available and intervals_overlap(start, end, slot.start_time, slot.end_time):
                return False

        return any(
            slot.is_available and interval_contains(slot.start_time, slot.end_time, start, end)
            for slot in slots
        )

    def apply_weekly_template(
        self,
        provider_id: int,
        start_date: date,
        end_date: date,
        days: dict[int, list[tuple[time, time]]],
    ) -> tuple[list[AvailabilitySlot], list[SkippedSlot]]:
        """Expand a weekly pattern into concrete open slots.

        ``days`` maps a weekday (0=Monday ... 6=Sunday) to the intervals to open
        on that day. Intervals that are already past or overlap an existing
        open slot are skipped and reported instead of failing the batch.
        """
        for intervals in days.values():
            for start, end in intervals:
                if start >= end:
                    raise InvalidIntervalError(start_time=format_time(start), end_time=format_time(end))

        if start_date > end_date:
            raise InvalidIntervalError('The template end date must not be before its start date.')

        created: list[AvailabilitySlot] = []
        skipped: list[SkippedSlot] = []

        with self._provider_write(provider_id):
            for current_day in iterate_dates(start_date, end_date):
                for start, end in sorted(days.get(current_day.weekday(), [])):
                    try:
                        self.validate_slot(provider_id, current_day, start, end)
                    except (PastDateError, OverlapConflictError) as exc:
                        skipped.append(SkippedSlot(current_day, start, end, exc.code))
                        continue

                    slot = AvailabilitySlot(
                        provider_id=provider_id,
                        date=current_day,
                        start_time=start,
                        end_time=end,
                        is_available=True,
                    )
                    self.db.add(slot)
                    self.db.flush()
                    created.append(slot)

            self.db.commit()

        for slot in created:
            self.db.refresh(slot)

        logger.info(
            'Weekly template applied for provider %s: %s slots created, %s skipped',
            provider_id, len(created), len(skipped),
        )
        return created, skipped
