"""Appointment model definitions."""

import enum
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from clinic_backend.database import Base
from clinic_backend.models.patient import Patient
from clinic_backend.models.user import User


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AppointmentType(str, enum.Enum):
    CONSULTATION = "CONSULTATION"
    CLEANING = "CLEANING"
    FILLING = "FILLING"
    ROOT_CANAL = "ROOT_CANAL"
    EXTRACTION = "EXTRACTION"
    IMPLANT = "IMPLANT"
    ORTHODONTICS = "ORTHODONTICS"
    EMERGENCY = "EMERGENCY"
    OTHER = "OTHER"


# Statuses that keep their row but no longer hold the dentist's time.
NON_BLOCKING_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})


class Appointment(Base):
    """Represents a booked dentist appointment. Times are stored as naive UTC."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_tenant_dentist_start", "tenant_id", "dentist_id", "start_time"),
        Index("idx_appointments_tenant_patient_start", "tenant_id", "patient_id", "start_time"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    dentist_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    appointment_type = Column(Enum(AppointmentType, name="appointment_type", native_enum=False), nullable=False)
    status = Column(
        Enum(AppointmentStatus, name="appointment_status", native_enum=False),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    notes = Column(String(1000))
    room = Column(String(50))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    patient = relationship(Patient)
    dentist = relationship(User)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def __repr__(self) -> str:
        return f"Appointment(id={self.id!r}, dentist_id={self.dentist_id!r}, start_time={self.start_time!r})"
