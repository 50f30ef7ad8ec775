from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.core import errors
from telehealth.database import SessionLocal, ensure_scheduling_schema
from telehealth.repositories.sql import (
    SqlAppointmentRepository,
    SqlAvailabilityRepository,
    SqlPaymentRepository,
    SqlSessionRepository,
)
from telehealth.services.appointments import AppointmentLifecycle
from telehealth.services.booking import BookingCoordinator
from telehealth.services.events import event_bus
from telehealth.services.payments import PaymentGate
from telehealth.services.slots import SlotService
from telehealth.services.video_sessions import VideoSessionManager

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def current_time() -> datetime:
    return datetime.now()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_http_exception(exc: errors.SchedulingError) -> HTTPException:
    if isinstance(exc, (errors.AppointmentNotFound, errors.DoctorNotFound, errors.SessionNotFound)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, errors.ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, errors.AuthorizationError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (errors.ConflictError, errors.StateError)):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    if isinstance(exc, errors.TooEarly):
        detail = {'message': exc.detail, 'earliest_join_at': exc.earliest_join_at.isoformat()}
    else:
        detail = exc.detail
    return HTTPException(status_code=status_code, detail=detail)


def slot_service(db: Session) -> SlotService:
    return SlotService(SqlAvailabilityRepository(db), SqlAppointmentRepository(db))


def booking_coordinator(db: Session) -> BookingCoordinator:
    return BookingCoordinator(slot_service(db), SqlAppointmentRepository(db), event_bus)


def appointment_lifecycle(db: Session) -> AppointmentLifecycle:
    return AppointmentLifecycle(SqlAvailabilityRepository(db), SqlAppointmentRepository(db), event_bus)


def payment_gate(db: Session) -> PaymentGate:
    return PaymentGate(
        SqlAvailabilityRepository(db),
        SqlAppointmentRepository(db),
        SqlPaymentRepository(db),
        event_bus,
    )


def video_session_manager(db: Session) -> VideoSessionManager:
    return VideoSessionManager(
        SqlAvailabilityRepository(db),
        SqlAppointmentRepository(db),
        SqlSessionRepository(db),
        event_bus,
    )
