"""SQLAlchemy implementations of the storage ports.

Every mutating call commits on its own. Uniqueness rules live in the schema
(partial unique indexes) so check-and-insert is atomic even across processes.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.core.errors import SlotAlreadyBooked, UpstreamUncertain
from telehealth.core.state_machine import AppointmentStatus, PaymentStatus, SessionStatus
from telehealth.models.appointment import Appointment
from telehealth.models.doctor import AvailabilityWindow, Doctor
from telehealth.models.payment import Payment
from telehealth.models.video_session import VideoSession

logger = logging.getLogger(__name__)


@contextmanager
def storage_call(db: Session, operation: str) -> Iterator[None]:
    """Turn driver/connection failures into ``UpstreamUncertain``."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Storage call failed: %s', operation)
        raise UpstreamUncertain(operation) from exc


class SqlAvailabilityRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_doctor(self, doctor_id: str) -> Doctor | None:
        with storage_call(self._db, 'load doctor'):
            return self._db.get(Doctor, doctor_id)

    def list_windows(self, doctor_id: str) -> list[AvailabilityWindow]:
        with storage_call(self._db, 'load availability'):
            return self._db.query(AvailabilityWindow).filter(
                AvailabilityWindow.doctor_id == doctor_id,
                AvailabilityWindow.is_available.is_(True),
            ).order_by(AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_time.asc()).all()


class SqlAppointmentRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, appointment_id: str) -> Appointment | None:
        with storage_call(self._db, 'load appointment'):
            return self._db.get(Appointment, appointment_id)

    def list_for_doctor_between(self, doctor_id: str, start: datetime, end: datetime) -> list[Appointment]:
        with storage_call(self._db, 'list doctor appointments'):
            return self._db.query(Appointment).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date >= start,
                Appointment.appointment_date < end,
            ).order_by(Appointment.appointment_date.asc()).all()

    def list_for_participant(self, requester_id: str) -> list[Appointment]:
        doctor_ids = select(Doctor.id).where(Doctor.user_id == requester_id)
        with storage_call(self._db, 'list participant appointments'):
            return self._db.query(Appointment).filter(
                or_(
                    Appointment.patient_id == requester_id,
                    Appointment.doctor_id.in_(doctor_ids),
                )
            ).order_by(Appointment.appointment_date.asc()).all()

    def insert_if_slot_free(self, appointment: Appointment) -> Appointment:
        with storage_call(self._db, 'insert appointment'):
            self._db.add(appointment)
            try:
                self._db.commit()
            except IntegrityError as exc:
                self._db.rollback()
                raise SlotAlreadyBooked(appointment.doctor_id, appointment.appointment_date) from exc
            self._db.refresh(appointment)
            return appointment

    def transition(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        new_status: AppointmentStatus,
        now: datetime,
    ) -> Appointment | None:
        with storage_call(self._db, f'transition appointment to {new_status.value}'):
            updated = self._db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.status == expected.value,
            ).update(
                {
                    Appointment.status: new_status.value,
                    Appointment.version: Appointment.version + 1,
                    Appointment.updated_at: now,
                },
                synchronize_session=False,
            )
            self._db.commit()
            if updated == 0:
                return None
            return self._db.get(Appointment, appointment_id)


class SqlPaymentRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        with storage_call(self._db, 'load payment'):
            return self._db.query(Payment).filter(Payment.transaction_id == transaction_id).first()

    def list_for_appointment(self, appointment_id: str) -> list[Payment]:
        with storage_call(self._db, 'list payments'):
            return self._db.query(Payment).filter(
                Payment.appointment_id == appointment_id,
            ).order_by(Payment.created_at.asc()).all()

    def record(self, payment: Payment) -> tuple[Payment, bool]:
        with storage_call(self._db, 'record payment'):
            self._db.add(payment)
            try:
                self._db.commit()
            except IntegrityError:
                self._db.rollback()
                existing = self._db.query(Payment).filter(Payment.transaction_id == payment.transaction_id).first()
                if existing is None:
                    existing = self._db.query(Payment).filter(
                        Payment.appointment_id == payment.appointment_id,
                        Payment.payment_status == PaymentStatus.COMPLETED.value,
                    ).first()
                if existing is None:
                    raise
                return existing, False
            self._db.refresh(payment)
            return payment, True


class SqlSessionRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, session_id: str) -> VideoSession | None:
        with storage_call(self._db, 'load video session'):
            return self._db.get(VideoSession, session_id)

    def get_for_appointment(self, appointment_id: str) -> VideoSession | None:
        with storage_call(self._db, 'load video session'):
            return self._db.query(VideoSession).filter(VideoSession.appointment_id == appointment_id).first()

    def create_if_absent(self, session: VideoSession) -> tuple[VideoSession, bool]:
        with storage_call(self._db, 'create video session'):
            self._db.add(session)
            try:
                self._db.commit()
            except IntegrityError:
                self._db.rollback()
                existing = self._db.query(VideoSession).filter(
                    VideoSession.appointment_id == session.appointment_id,
                ).first()
                if existing is None:
                    raise
                return existing, False
            self._db.refresh(session)
            return session, True

    def record_join(self, session_id: str, user_id: str, joined_at: datetime) -> VideoSession:
        with storage_call(self._db, 'record participant join'):
            session = self._db.get(VideoSession, session_id)
            participants = [dict(participant) for participant in session.participants or []]
            changed = False
            for participant in participants:
                if participant.get('user_id') == user_id and not participant.get('joined_at'):
                    participant['joined_at'] = joined_at.isoformat()
                    changed = True
            if changed:
                # Reassign so the JSON column is flagged dirty.
                session.participants = participants
                self._db.commit()
                self._db.refresh(session)
            return session

    def end(self, session_id: str, ended_at: datetime, duration_seconds: int) -> VideoSession | None:
        with storage_call(self._db, 'end video session'):
            updated = self._db.query(VideoSession).filter(
                VideoSession.id == session_id,
                VideoSession.status == SessionStatus.ACTIVE.value,
            ).update(
                {
                    VideoSession.status: SessionStatus.ENDED.value,
                    VideoSession.ended_at: ended_at,
                    VideoSession.duration_seconds: duration_seconds,
                },
                synchronize_session=False,
            )
            self._db.commit()
            if updated == 0:
                return None
            return self._db.get(VideoSession, session_id)

    def fail(self, session_id: str, ended_at: datetime) -> VideoSession | None:
        with storage_call(self._db, 'fail video session'):
            updated = self._db.query(VideoSession).filter(
                VideoSession.id == session_id,
                VideoSession.status == SessionStatus.ACTIVE.value,
            ).update(
                {
                    VideoSession.status: SessionStatus.FAILED.value,
                    VideoSession.ended_at: ended_at,
                },
                synchronize_session=False,
            )
            self._db.commit()
            if updated == 0:
                return None
            return self._db.get(VideoSession, session_id)
