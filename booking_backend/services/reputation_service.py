"""Reliability scoring for clients and providers.

Appointment outcomes and incidents move a bounded score. Three severe
incidents (no-show/absence, lost dispute) suspend an actor for good; a score
below zero suspends them for a fixed number of days. A temporary suspension
is only lifted when someone reads it after expiry; nothing sweeps in the
background and good events never shorten it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_backend.core.actors import Role
from booking_backend.core.clock import Clock
from booking_backend.core.config import SchedulingSettings
from booking_backend.core.locks import actor_locks
from booking_backend.models.reliability import INITIAL_SCORE, ReliabilityRecord

logger = logging.getLogger(__name__)

MIN_SCORE = -100
MAX_SCORE = 100

EXCELLENT_THRESHOLD = 70
NORMAL_THRESHOLD = 50
WARNING_THRESHOLD = 30
SUSPENSION_THRESHOLD = 0
MAX_SEVERE_INCIDENTS = 3

PERMANENT_SUSPENSION_REASON = 'too many severe incidents'
TEMPORARY_SUSPENSION_REASON = 'score below threshold'


class ReputationEvent(str, Enum):
    COMPLETED = 'completed'
    CANCELLED_EARLY = 'cancelled_early'
    CANCELLED_LATE_ACCEPTED = 'cancelled_late_accepted'
    CANCELLED_LATE_REJECTED = 'cancelled_late_rejected'
    NO_SHOW = 'no_show'
    ABSENT = 'absent'
    # The present party of a no-show; worth no points.
    NO_SHOW_REPORTED = 'no_show_reported'
    LATE_15 = 'late_15'
    LATE_30 = 'late_30'
    POSITIVE_REVIEW = 'positive_review'
    REVIEW_RESPONSE = 'review_response'
    DISPUTE_WON = 'dispute_won'
    DISPUTE_LOST = 'dispute_lost'


REPUTATION_POINTS: dict[Role, dict[ReputationEvent, int]] = {
    Role.CLIENT: {
        ReputationEvent.COMPLETED: 10,
        ReputationEvent.CANCELLED_EARLY: -5,
        ReputationEvent.CANCELLED_LATE_ACCEPTED: -10,
        ReputationEvent.CANCELLED_LATE_REJECTED: -15,
        ReputationEvent.NO_SHOW: -30,
        ReputationEvent.LATE_15: -5,
        ReputationEvent.LATE_30: -10,
        ReputationEvent.POSITIVE_REVIEW: 2,
        ReputationEvent.DISPUTE_WON: 5,
        ReputationEvent.DISPUTE_LOST: -20,
    },
    Role.PROVIDER: {
        ReputationEvent.COMPLETED: 10,
        ReputationEvent.CANCELLED_EARLY: -10,
        ReputationEvent.CANCELLED_LATE_ACCEPTED: -15,
        ReputationEvent.CANCELLED_LATE_REJECTED: -25,
        ReputationEvent.ABSENT: -50,
        ReputationEvent.LATE_15: -10,
        ReputationEvent.LATE_30: -20,
        ReputationEvent.POSITIVE_REVIEW: 5,
        ReputationEvent.REVIEW_RESPONSE: 1,
        ReputationEvent.DISPUTE_WON: 5,
        ReputationEvent.DISPUTE_LOST: -30,
    },
}

BADGE_LABELS: dict[Role, dict[str, str]] = {
    Role.CLIENT: {
        'excellent': 'Reliable client ✓',
        'normal': '',
        'warning': '⚠️ Low reliability',
        'restricted': '🚫 Restricted account',
    },
    Role.PROVIDER: {
        'excellent': 'Reliable pro ✓',
        'normal': '',
        'warning': '⚠️ Reliability to verify',
        'restricted': '🚫 Restricted account',
    },
}


@dataclass(frozen=True)
class Badge:
    level: str
    label: str


@dataclass(frozen=True)
class ReliabilitySnapshot:
    actor_kind: Role
    actor_id: int
    score: int
    badge: Badge
    is_suspended: bool
    suspended_until: datetime | None
    suspension_reason: str | None


def actor_kind(value: Role | str) -> Role:
    kind = Role(value)
    if kind not in REPUTATION_POINTS:
        raise ValueError(f'Reputation is not tracked for role {kind.value}.')
    return kind


def normalize_event(kind: Role, event: ReputationEvent | str) -> ReputationEvent:
    # no_show and absent name the same incident seen from either side.
    event = ReputationEvent(event)
    if kind == Role.PROVIDER and event == ReputationEvent.NO_SHOW:
        return ReputationEvent.ABSENT
    if kind == Role.CLIENT and event == ReputationEvent.ABSENT:
        return ReputationEvent.NO_SHOW
    return event


def points_for(kind: Role | str, event: ReputationEvent | str) -> int:
    kind = actor_kind(kind)
    return REPUTATION_POINTS[kind].get(normalize_event(kind, event), 0)


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def badge_for(kind: Role | str, score: int) -> Badge:
    if score >= EXCELLENT_THRESHOLD:
        level = 'excellent'
    elif score >= NORMAL_THRESHOLD:
        level = 'normal'
    elif score >= WARNING_THRESHOLD:
        level = 'warning'
    else:
        level = 'restricted'
    return Badge(level=level, label=BADGE_LABELS[actor_kind(kind)][level])


def _bump_counters(record: ReliabilityRecord, event: ReputationEvent) -> None:
    if event == ReputationEvent.COMPLETED:
        record.completed_count += 1
        record.total_appointments += 1
    elif event in (ReputationEvent.NO_SHOW, ReputationEvent.ABSENT):
        record.no_show_count += 1
        record.total_appointments += 1
    elif event == ReputationEvent.NO_SHOW_REPORTED:
        record.total_appointments += 1
    elif event in (ReputationEvent.CANCELLED_LATE_ACCEPTED, ReputationEvent.CANCELLED_LATE_REJECTED):
        record.cancelled_late_count += 1
    elif event in (ReputationEvent.LATE_15, ReputationEvent.LATE_30):
        record.late_count += 1
    elif event == ReputationEvent.DISPUTE_WON:
        record.disputes_won_count += 1
    elif event == ReputationEvent.DISPUTE_LOST:
        record.disputes_lost_count += 1


class ReputationService:
    def __init__(self, db: Session, clock: Clock | None = None, settings: SchedulingSettings | None = None):
        self.db = db
        self.clock = clock or Clock()
        self.settings = settings or SchedulingSettings()

    def _find(self, kind: Role, actor_id: int, for_update: bool = False) -> ReliabilityRecord | None:
        query = self.db.query(ReliabilityRecord).filter(
            ReliabilityRecord.actor_kind == kind.value,
            ReliabilityRecord.actor_id == actor_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_or_create(self, kind: Role | str, actor_id: int) -> ReliabilityRecord:
        kind = actor_kind(kind)
        record = self._find(kind, actor_id, for_update=True)
        if record is not None:
            return record

        record = ReliabilityRecord(
            actor_kind=kind.value,
            actor_id=actor_id,
            score=INITIAL_SCORE,
            total_appointments=0,
            completed_count=0,
            no_show_count=0,
            cancelled_late_count=0,
            late_count=0,
            disputes_won_count=0,
            disputes_lost_count=0,
            is_suspended=False,
        )
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError:
            # Another process created it first.
            self.db.rollback()
            return self._find(kind, actor_id, for_update=True)

        logger.info('Reliability record created for %s %s', kind.value, actor_id)
        return record

    def _apply_suspension_policy(self, record: ReliabilityRecord, kind: Role) -> None:
        if record.severe_incident_count >= MAX_SEVERE_INCIDENTS:
            record.is_suspended = True
            record.suspended_until = None
            record.suspension_reason = PERMANENT_SUSPENSION_REASON
            logger.warning('%s %s permanently suspended', kind.value, record.actor_id)
        elif record.score < SUSPENSION_THRESHOLD:
            record.is_suspended = True
            record.suspended_until = self.clock.now() + timedelta(days=self.settings.suspension_days)
            record.suspension_reason = TEMPORARY_SUSPENSION_REASON
            logger.warning(
                '%s %s suspended until %s', kind.value, record.actor_id, record.suspended_until.isoformat(),
            )

    def apply_event(self, kind: Role | str, actor_id: int, event: ReputationEvent | str) -> ReliabilityRecord:
        kind = actor_kind(kind)
        event = normalize_event(kind, event)
        points = points_for(kind, event)

        with actor_locks.hold((kind.value, actor_id)):
            record = self.get_or_create(kind, actor_id)
            previous_score = record.score
            record.score = clamp_score(record.score + points)
            _bump_counters(record, event)
            self._apply_suspension_policy(record, kind)

            self.db.commit()
            self.db.refresh(record)

        logger.info(
            'Reliability of %s %s updated: %s (%+d) %s -> %s',
            kind.value, actor_id, event.value, points, previous_score, record.score,
        )
        return record

    def is_suspended(self, kind: Role | str, actor_id: int) -> bool:
        kind = actor_kind(kind)

        with actor_locks.hold((kind.value, actor_id)):
            record = self._find(kind, actor_id, for_update=True)
            suspended = record is not None and bool(record.is_suspended)

            if suspended and record.suspended_until is not None and record.suspended_until < self.clock.now():
                record.is_suspended = False
                record.suspended_until = None
                record.suspension_reason = None
                suspended = False
                logger.info('Temporary suspension of %s %s expired', kind.value, actor_id)

            # Releases the row lock taken above.
            self.db.commit()
            return suspended

    def get_reliability(self, kind: Role | str, actor_id: int) -> ReliabilitySnapshot:
        kind = actor_kind(kind)
        suspended = self.is_suspended(kind, actor_id)
        record = self._find(kind, actor_id)

        if record is None:
            return ReliabilitySnapshot(
                actor_kind=kind,
                actor_id=actor_id,
                score=INITIAL_SCORE,
                badge=badge_for(kind, INITIAL_SCORE),
                is_suspended=False,
                suspended_until=None,
                suspension_reason=None,
            )

        return ReliabilitySnapshot(
            actor_kind=kind,
            actor_id=actor_id,
            score=record.score,
            badge=badge_for(kind, record.score),
            is_suspended=suspended,
            suspended_until=record.suspended_until,
            suspension_reason=record.suspension_reason,
        )
