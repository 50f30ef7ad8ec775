import logging
from datetime import datetime, time
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from conftest import DOCTOR_ID, MONDAY, PATIENT_ID, SUNDAY_NOON
from telehealth.core.errors import UpstreamUncertain
from telehealth.core.state_machine import AppointmentStatus
from telehealth.models.appointment import Appointment
from telehealth.repositories.sql import SqlAppointmentRepository, SqlPaymentRepository
from telehealth.services.booking import BookingCoordinator


class CommitFails:
    """Wraps a real session; ``commit`` drops the connection."""

    def __init__(self, db) -> None:
        self._db = db
        self.rollbacks = 0

    def __getattr__(self, name):
        return getattr(self._db, name)

    def commit(self) -> None:
        raise OperationalError('COMMIT', {}, Exception('server closed the connection unexpectedly'))

    def rollback(self) -> None:
        self.rollbacks += 1
        self._db.rollback()


def test_failed_commit_during_booking_is_unknown_outcome(services, events, db_session, caplog) -> None:
    flaky = CommitFails(db_session)
    booking = BookingCoordinator(services.slots, SqlAppointmentRepository(flaky), events)

    with caplog.at_level(logging.ERROR, logger='telehealth.repositories.sql'):
        with pytest.raises(UpstreamUncertain) as exception_info:
            booking.book(PATIENT_ID, DOCTOR_ID, SimpleNamespace(date=MONDAY, time=time(9, 0)), 'virtual', None, SUNDAY_NOON)

    assert exception_info.value.operation == 'insert appointment'
    assert flaky.rollbacks == 1
    assert events.events == []
    assert db_session.query(Appointment).count() == 0
    assert 'insert appointment' in caplog.text


def test_failed_commit_during_transition_is_unknown_outcome(services, db_session) -> None:
    appointment = services.booking.book(
        PATIENT_ID, DOCTOR_ID, SimpleNamespace(date=MONDAY, time=time(9, 0)), 'virtual', None, SUNDAY_NOON
    )
    flaky = CommitFails(db_session)

    with pytest.raises(UpstreamUncertain):
        SqlAppointmentRepository(flaky).transition(
            appointment.id,
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.CONFIRMED,
            SUNDAY_NOON,
        )

    assert flaky.rollbacks == 1
    assert services.appointments.get(appointment.id).status == 'scheduled'


def test_failed_read_is_unknown_outcome(db_session) -> None:
    class ReadFails(CommitFails):
        def query(self, *entities):
            raise OperationalError('SELECT', {}, Exception('timeout'))

    flaky = ReadFails(db_session)

    with pytest.raises(UpstreamUncertain):
        SqlPaymentRepository(flaky).list_for_appointment('apt-1')

    assert flaky.rollbacks == 1


def test_transition_returns_none_when_status_moved(services) -> None:
    appointment = services.booking.book(
        PATIENT_ID, DOCTOR_ID, SimpleNamespace(date=MONDAY, time=time(9, 0)), 'virtual', None, SUNDAY_NOON
    )

    result = services.appointments.transition(
        appointment.id,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        datetime(2026, 1, 5, 9, 0),
    )

    assert result is None
    assert services.appointments.get(appointment.id).version == 1
