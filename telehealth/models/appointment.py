"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, text

from telehealth.database import Base

_OCCUPYING_CLAUSE = text("status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'no_show')")


class Appointment(Base):
    """A booked consultation between a patient and a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        # One occupying appointment per doctor and instant; only cancelled rows release the slot.
        Index(
            "uq_appointments_doctor_instant",
            "doctor_id",
            "appointment_date",
            unique=True,
            sqlite_where=_OCCUPYING_CLAUSE,
            postgresql_where=_OCCUPYING_CLAUSE,
        ),
        Index("idx_appointments_patient_date", "patient_id", "appointment_date"),
    )

    id = Column(String(36), primary_key=True)
    patient_id = Column(String(36), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    appointment_date = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    notes = Column(String)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)
