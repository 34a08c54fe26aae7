"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from booking_backend.database import Base


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class CancellationType(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"


class Appointment(Base):
    """Represents a client's reservation of a provider's time for one service."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    # Frozen at booking time; later catalog edits do not apply.
    service_name = Column(String, nullable=False)
    price_amount = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    scheduled_start = Column(DateTime, nullable=False)  # naive UTC
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    confirmation_code = Column(String(8), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    provider = relationship("Provider")
    confirmation = relationship(
        "AppointmentConfirmation",
        back_populates="appointment",
        uselist=False,
        cascade="all, delete-orphan",
    )
    cancellation = relationship(
        "AppointmentCancellation",
        back_populates="appointment",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}


class AppointmentConfirmation(Base):
    """Records who confirmed an appointment and when."""
    __tablename__ = "appointment_confirmations"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    confirmed_by_actor_id = Column(Integer, nullable=False)
    confirmed_at = Column(DateTime, nullable=False)

    appointment = relationship("Appointment", back_populates="confirmation")


class AppointmentCancellation(Base):
    """Records who cancelled an appointment, when and why."""
    __tablename__ = "appointment_cancellations"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    cancelled_by_actor_id = Column(Integer, nullable=False)
    cancelled_at = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=False)
    cancellation_type = Column(String, nullable=False)

    appointment = relationship("Appointment", back_populates="cancellation")
