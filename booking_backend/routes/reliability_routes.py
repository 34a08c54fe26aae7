from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_actor, require_roles
from booking_backend.core.actors import Actor, Role
from booking_backend.core.clock import Clock
from booking_backend.core.config import SchedulingSettings
from booking_backend.database import get_db
from booking_backend.routes.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_clock,
    get_settings,
)
from booking_backend.services.reputation_service import (
    ReliabilitySnapshot,
    ReputationEvent,
    ReputationService,
    actor_kind,
    points_for,
)

router = APIRouter(tags=['reliability'])

require_admin = require_roles(Role.ADMIN)


class ReliabilityResponse(BaseModel):
    actor_kind: str
    actor_id: int
    score: int
    level: str
    badge: str
    is_suspended: bool
    suspended_until: datetime | None = None
    suspension_reason: str | None = None

    @classmethod
    def from_snapshot(cls, snapshot: ReliabilitySnapshot) -> 'ReliabilityResponse':
        return cls(
            actor_kind=snapshot.actor_kind.value,
            actor_id=snapshot.actor_id,
            score=snapshot.score,
            level=snapshot.badge.level,
            badge=snapshot.badge.label,
            is_suspended=snapshot.is_suspended,
            suspended_until=snapshot.suspended_until,
            suspension_reason=snapshot.suspension_reason,
        )


class ReputationEventRequest(BaseModel):
    event: ReputationEvent


class ReputationEventResponse(ReliabilityResponse):
    event: str
    points: int


def _resolve_kind(role: str) -> Role:
    try:
        return actor_kind(role)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Reliability is tracked for clients and providers only.',
        ) from exc


@router.get('/{role}/{actor_id}', response_model=ReliabilityResponse)
def get_reliability(
    role: str,
    actor_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    del actor
    kind = _resolve_kind(role)
    ensure_database_ready()

    try:
        snapshot = ReputationService(db, clock, settings).get_reliability(kind, actor_id)
        return ReliabilityResponse.from_snapshot(snapshot)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{role}/{actor_id}/events', response_model=ReputationEventResponse)
def record_reputation_event(
    role: str,
    actor_id: int,
    data: ReputationEventRequest,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: SchedulingSettings = Depends(get_settings),
):
    del actor
    kind = _resolve_kind(role)
    ensure_database_ready()

    try:
        service = ReputationService(db, clock, settings)
        service.apply_event(kind, actor_id, data.event)
        snapshot = service.get_reliability(kind, actor_id)
        return ReputationEventResponse(
            **ReliabilityResponse.from_snapshot(snapshot).model_dump(),
            event=data.event.value,
            points=points_for(kind, data.event),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
