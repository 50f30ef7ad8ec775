import os
from datetime import date, datetime, time
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from telehealth.database import Base  # noqa: E402
from telehealth.models.appointment import Appointment  # noqa: E402
from telehealth.models.doctor import AvailabilityWindow, Doctor  # noqa: E402
from telehealth.models.payment import Payment  # noqa: E402
from telehealth.models.video_session import VideoSession  # noqa: E402
from telehealth.repositories.sql import (  # noqa: E402
    SqlAppointmentRepository,
    SqlAvailabilityRepository,
    SqlPaymentRepository,
    SqlSessionRepository,
)
from telehealth.services.appointments import AppointmentLifecycle  # noqa: E402
from telehealth.services.booking import BookingCoordinator  # noqa: E402
from telehealth.services.payments import PaymentGate  # noqa: E402
from telehealth.services.slots import SlotService  # noqa: E402
from telehealth.services.video_sessions import VideoSessionManager  # noqa: E402

MONDAY = date(2026, 1, 5)
SUNDAY_NOON = datetime(2026, 1, 4, 12, 0)
DOCTOR_ID = 'doc-1'
DOCTOR_USER_ID = 'doctor-user-1'
PATIENT_ID = 'patient-1'
OTHER_PATIENT_ID = 'patient-2'

TABLES = [Doctor.__table__, AvailabilityWindow.__table__, Appointment.__table__, Payment.__table__, VideoSession.__table__]


class RecordingEvents:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    @property
    def statuses(self) -> list[str]:
        return [event.new_status.value for event in self.events]


def seed_doctor(db, *, start: time = time(9, 0), end: time = time(10, 0), day_of_week: int = 1) -> Doctor:
    doctor = Doctor(
        id=DOCTOR_ID,
        user_id=DOCTOR_USER_ID,
        license_number='MD-0001',
        consultation_fee=Decimal('40.00'),
        is_verified=True,
        is_available=True,
    )
    db.add(doctor)
    db.add(
        AvailabilityWindow(
            doctor_id=DOCTOR_ID,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            is_available=True,
        )
    )
    db.commit()
    return doctor


def build_services(db, events) -> SimpleNamespace:
    availability = SqlAvailabilityRepository(db)
    appointments = SqlAppointmentRepository(db)
    slots = SlotService(availability, appointments)
    return SimpleNamespace(
        slots=slots,
        booking=BookingCoordinator(slots, appointments, events),
        lifecycle=AppointmentLifecycle(availability, appointments, events),
        payments=PaymentGate(availability, appointments, SqlPaymentRepository(db), events),
        sessions=VideoSessionManager(availability, appointments, SqlSessionRepository(db), events),
        appointments=appointments,
        session_repository=SqlSessionRepository(db),
    )


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


@pytest.fixture
def doctor(db_session) -> Doctor:
    return seed_doctor(db_session)


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def services(db_session, doctor, events) -> SimpleNamespace:
    return build_services(db_session, events)
