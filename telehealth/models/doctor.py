"""Doctor and weekly availability model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Numeric, String, Time

from telehealth.database import Base


class Doctor(Base):
    """A provider profile. Managed by provider administration, read-only here."""
    __tablename__ = "doctors"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    license_number = Column(String)
    consultation_fee = Column(Numeric(10, 2), nullable=False, default=0)
    is_verified = Column(Boolean, default=False)
    is_available = Column(Boolean, default=True)


class AvailabilityWindow(Base):
    """A recurring weekly interval in which a doctor accepts bookings."""
    __tablename__ = "doctor_availability"
    __table_args__ = (
        Index("idx_doctor_availability_day", "doctor_id", "day_of_week"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True)
