"""Payment model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Numeric, String, text

from telehealth.database import Base

_COMPLETED_CLAUSE = text("payment_status = 'completed'")


class Payment(Base):
    """A settled payment outcome reported by the payment processor."""
    __tablename__ = "payments"
    __table_args__ = (
        Index(
            "uq_payments_completed_per_appointment",
            "appointment_id",
            unique=True,
            sqlite_where=_COMPLETED_CLAUSE,
            postgresql_where=_COMPLETED_CLAUSE,
        ),
    )

    id = Column(String(36), primary_key=True)
    patient_id = Column(String(36), nullable=False)
    doctor_id = Column(String(36))
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(String, nullable=False)
    payment_status = Column(String, nullable=False)
    transaction_id = Column(String, nullable=False, unique=True)
    provider = Column(String)
    # "metadata" is reserved on declarative classes.
    details = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)
