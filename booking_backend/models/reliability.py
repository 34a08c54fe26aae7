"""Reliability (reputation) model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint, func

from booking_backend.database import Base

INITIAL_SCORE = 50


class ReliabilityRecord(Base):
    """Bounded reliability score and incident counters for one client or provider."""
    __tablename__ = "reliability_records"
    __table_args__ = (
        UniqueConstraint("actor_kind", "actor_id", name="uq_reliability_actor"),
    )

    id = Column(Integer, primary_key=True)
    actor_kind = Column(String, nullable=False)  # client/provider
    actor_id = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False, default=INITIAL_SCORE)
    total_appointments = Column(Integer, nullable=False, default=0)
    completed_count = Column(Integer, nullable=False, default=0)
    no_show_count = Column(Integer, nullable=False, default=0)  # client no-shows, provider absences
    cancelled_late_count = Column(Integer, nullable=False, default=0)
    late_count = Column(Integer, nullable=False, default=0)
    disputes_won_count = Column(Integer, nullable=False, default=0)
    disputes_lost_count = Column(Integer, nullable=False, default=0)
    is_suspended = Column(Boolean, nullable=False, default=False)
    suspended_until = Column(DateTime, nullable=True)
    suspension_reason = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def severe_incident_count(self) -> int:
        return (self.no_show_count or 0) + (self.disputes_lost_count or 0)
