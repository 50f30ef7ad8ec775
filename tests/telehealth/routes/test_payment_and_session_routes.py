from datetime import datetime, time
from decimal import Decimal

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from conftest import DOCTOR_ID, DOCTOR_USER_ID, MONDAY, OTHER_PATIENT_ID, PATIENT_ID, SUNDAY_NOON
from telehealth.routes import payment_routes, scheduling_routes, session_routes
from telehealth.routes.payment_routes import (
    CONFIRMED_MESSAGE,
    FAILED_MESSAGE,
    PaymentOutcomeRequest,
    get_payment_quote,
    list_payments,
    settle_payment,
)
from telehealth.routes.scheduling_routes import CreateAppointmentRequest, ParticipantRequest, create_appointment
from telehealth.routes.session_routes import MediaStateRequest, end_session, start_session, update_media_state


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock(monkeypatch) -> Clock:
    clock = Clock(SUNDAY_NOON)
    for module in (scheduling_routes, payment_routes, session_routes):
        monkeypatch.setattr(module, 'ensure_database_ready', lambda: None)
        monkeypatch.setattr(module, 'current_time', clock)
    return clock


@pytest.fixture
def booked(db_session, doctor, clock):
    return create_appointment(
        CreateAppointmentRequest(patient_id=PATIENT_ID, doctor_id=DOCTOR_ID, date=MONDAY, time=time(9, 0)),
        db=db_session,
    )


def _outcome(status: str = 'completed', transaction_id: str = 'txn_1', **overrides) -> PaymentOutcomeRequest:
    values = {
        'patient_id': PATIENT_ID,
        'amount': Decimal('45.00'),
        'payment_method': 'card',
        'payment_status': status,
        'transaction_id': transaction_id,
    }
    values.update(overrides)
    return PaymentOutcomeRequest(**values)


def test_payment_outcome_request_normalizes_fields() -> None:
    request = _outcome(' Completed ', payment_method=' CARD ', currency=' eur ')

    assert request.payment_status == 'completed'
    assert request.payment_method == 'card'
    assert request.currency == 'EUR'
    assert request.metadata == {}


@pytest.mark.parametrize(
    'overrides',
    [
        {'payment_status': 'refunded'},
        {'payment_method': 'cash'},
        {'amount': Decimal('0')},
        {'currency': 'dollars'},
        {'transaction_id': '  '},
    ],
)
def test_payment_outcome_request_rejects_invalid_fields(overrides) -> None:
    with pytest.raises(ValidationError):
        _outcome(**overrides)


def test_quote_for_booked_appointment(db_session, booked) -> None:
    quote = get_payment_quote(booked.id, db=db_session)

    assert quote.total == Decimal('45.00')
    assert quote.currency == 'USD'


def test_quote_for_unknown_appointment_is_not_found(db_session, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_payment_quote('missing', db=db_session)

    assert exception_info.value.status_code == 404


def test_settle_completed_payment_confirms(db_session, booked) -> None:
    settlement = settle_payment(booked.id, _outcome(), db=db_session)

    assert settlement.confirmed is True
    assert settlement.message == CONFIRMED_MESSAGE
    assert settlement.appointment.status == 'confirmed'

    payments = list_payments(booked.id, db=db_session)
    assert [payment.transaction_id for payment in payments] == ['txn_1']
    assert payments[0].provider == 'stripe'


def test_settle_failed_payment_keeps_booking(db_session, booked) -> None:
    settlement = settle_payment(booked.id, _outcome('failed', 'txn_fail'), db=db_session)

    assert settlement.confirmed is False
    assert settlement.message == FAILED_MESSAGE
    assert settlement.appointment.status == 'scheduled'


def test_settle_for_other_patient_is_bad_request(db_session, booked) -> None:
    with pytest.raises(HTTPException) as exception_info:
        settle_payment(booked.id, _outcome(patient_id=OTHER_PATIENT_ID), db=db_session)

    assert exception_info.value.status_code == 400


def test_start_session_too_early_reports_join_time(db_session, booked, clock) -> None:
    settle_payment(booked.id, _outcome(), db=db_session)
    clock.now = datetime(2026, 1, 5, 8, 30)

    with pytest.raises(HTTPException) as exception_info:
        start_session(booked.id, ParticipantRequest(requester_id=PATIENT_ID), db=db_session)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['earliest_join_at'] == '2026-01-05T08:45:00'


def test_start_session_before_payment_is_conflict(db_session, booked, clock) -> None:
    clock.now = datetime(2026, 1, 5, 8, 50)

    with pytest.raises(HTTPException) as exception_info:
        start_session(booked.id, ParticipantRequest(requester_id=PATIENT_ID), db=db_session)

    assert exception_info.value.status_code == 409


def test_start_media_and_end_session(db_session, booked, clock) -> None:
    settle_payment(booked.id, _outcome(), db=db_session)

    clock.now = datetime(2026, 1, 5, 8, 50)
    started = start_session(booked.id, ParticipantRequest(requester_id=PATIENT_ID), db=db_session)
    assert started.status == 'active'
    assert started.room_url.endswith(booked.id)

    media = update_media_state(
        started.id,
        MediaStateRequest(requester_id=DOCTOR_USER_ID, video_enabled=False),
        db=db_session,
    )
    assert media.video_enabled is False
    assert media.audio_enabled is True

    clock.now = datetime(2026, 1, 5, 9, 20)
    ended = end_session(started.id, ParticipantRequest(requester_id=DOCTOR_USER_ID), db=db_session)
    assert ended.status == 'ended'
    assert ended.duration_seconds == 1800


def test_start_session_by_stranger_is_forbidden(db_session, booked, clock) -> None:
    settle_payment(booked.id, _outcome(), db=db_session)
    clock.now = datetime(2026, 1, 5, 8, 50)

    with pytest.raises(HTTPException) as exception_info:
        start_session(booked.id, ParticipantRequest(requester_id=OTHER_PATIENT_ID), db=db_session)

    assert exception_info.value.status_code == 403


def test_end_unknown_session_is_not_found(db_session, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        end_session('missing', ParticipantRequest(requester_id=PATIENT_ID), db=db_session)

    assert exception_info.value.status_code == 404
