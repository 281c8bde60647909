"""Appointment model definitions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from clinic_backend.database import Base
from clinic_backend.models.patient import Patient
from clinic_backend.scheduling.conflicts import CANCELLED_STATUS

COMPLETED_STATUS = 'completed'
APPOINTMENT_STATUSES = ('scheduled', 'confirmed', COMPLETED_STATUS, CANCELLED_STATUS, 'no-show')


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    """Represents a patient appointment on a clinician's schedule."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String, nullable=False, index=True)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)  # HH:MM
    duration_minutes = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    status = Column(String, nullable=False, default='scheduled')
    notes = Column(Text, default='')
    cancellation_reason = Column(String)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    created_by = Column(String)
    updated_by = Column(String)

    patient = relationship(Patient, lazy="joined")
    status_history = relationship(
        "AppointmentStatusChange",
        order_by="AppointmentStatusChange.id",
        cascade="all, delete-orphan",
    )
    note_revisions = relationship(
        "AppointmentNoteRevision",
        order_by="AppointmentNoteRevision.id",
        cascade="all, delete-orphan",
    )


class AppointmentStatusChange(Base):
    __tablename__ = "appointment_status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    changed_at = Column(DateTime, default=_utcnow)
    changed_by = Column(String)
    reason = Column(String)


class AppointmentNoteRevision(Base):
    __tablename__ = "appointment_note_revisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    notes = Column(Text, nullable=False)
    changed_at = Column(DateTime, default=_utcnow)
    changed_by = Column(String)
