from datetime import datetime, time
from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import DOCTOR_ID, MONDAY, OTHER_PATIENT_ID, PATIENT_ID, SUNDAY_NOON
from telehealth.core.errors import AppointmentNotFound, DuplicatePayment, InvalidAppointmentState, ValidationError
from telehealth.models.payment import Payment
from telehealth.services.payments import PaymentOutcome, default_provider
from telehealth.core.state_machine import PaymentMethod

SETTLED_AT = datetime(2026, 1, 4, 12, 5)


def _outcome(status: str = 'completed', transaction_id: str = 'txn_1', **overrides) -> PaymentOutcome:
    values = {
        'patient_id': PATIENT_ID,
        'amount': Decimal('45.00'),
        'currency': 'usd',
        'payment_method': 'card',
        'payment_status': status,
        'transaction_id': transaction_id,
        'metadata': {'card_last_four': '4242'},
    }
    values.update(overrides)
    return PaymentOutcome(**values)


@pytest.fixture
def appointment(services):
    return services.booking.book(PATIENT_ID, DOCTOR_ID, SimpleNamespace(date=MONDAY, time=time(9, 0)), 'virtual', None, SUNDAY_NOON)


def test_completed_payment_confirms_appointment(services, appointment, events, db_session) -> None:
    confirmed = services.payments.apply_payment_outcome(appointment.id, _outcome(), SETTLED_AT)

    assert confirmed.status == 'confirmed'
    assert confirmed.version == 2
    assert events.statuses == ['scheduled', 'confirmed']

    payment = db_session.query(Payment).one()
    assert payment.payment_status == 'completed'
    assert payment.currency == 'USD'
    assert payment.provider == 'stripe'
    assert payment.details == {'card_last_four': '4242'}


def test_reapplying_completed_payment_is_a_no_op(services, appointment, events, db_session) -> None:
    services.payments.apply_payment_outcome(appointment.id, _outcome(), SETTLED_AT)
    again = services.payments.apply_payment_outcome(appointment.id, _outcome(), SETTLED_AT)

    assert again.status == 'confirmed'
    assert again.version == 2
    assert db_session.query(Payment).count() == 1
    assert events.statuses == ['scheduled', 'confirmed']


def test_second_completed_charge_for_paid_appointment_is_rejected(services, appointment, events, db_session) -> None:
    services.payments.apply_payment_outcome(appointment.id, _outcome(transaction_id='txn_1'), SETTLED_AT)

    with pytest.raises(DuplicatePayment) as exception_info:
        services.payments.apply_payment_outcome(appointment.id, _outcome(transaction_id='txn_2'), SETTLED_AT)

    assert exception_info.value.transaction_id == 'txn_2'
    assert db_session.query(Payment).count() == 1
    assert services.appointments.get(appointment.id).status == 'confirmed'
    assert events.statuses == ['scheduled', 'confirmed']


def test_extra_charge_that_loses_the_race_is_rejected(services, appointment, db_session) -> None:
    db_session.add(
        Payment(
            id='pay-first',
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_id=appointment.id,
            amount=Decimal('45.00'),
            currency='USD',
            payment_method='card',
            payment_status='completed',
            transaction_id='txn_first',
            provider='stripe',
            details={},
        )
    )
    db_session.commit()

    with pytest.raises(DuplicatePayment):
        services.payments.apply_payment_outcome(appointment.id, _outcome(transaction_id='txn_late'), SETTLED_AT)

    assert db_session.query(Payment).count() == 1


def test_failed_payment_keeps_booking_then_retry_confirms(services, appointment, db_session) -> None:
    after_failure = services.payments.apply_payment_outcome(appointment.id, _outcome('failed', 'txn_fail'), SETTLED_AT)

    assert after_failure.status == 'scheduled'
    slots = services.slots.list_slots(DOCTOR_ID, MONDAY, SUNDAY_NOON)
    assert slots[0].available is False

    after_retry = services.payments.apply_payment_outcome(appointment.id, _outcome('completed', 'txn_retry'), SETTLED_AT)

    assert after_retry.status == 'confirmed'
    statuses = sorted(payment.payment_status for payment in services.payments.list_payments(appointment.id))
    assert statuses == ['completed', 'failed']


def test_completed_replay_of_failed_transaction_is_rejected(services, appointment) -> None:
    services.payments.apply_payment_outcome(appointment.id, _outcome('failed', 'txn_1'), SETTLED_AT)

    with pytest.raises(ValidationError):
        services.payments.apply_payment_outcome(appointment.id, _outcome('completed', 'txn_1'), SETTLED_AT)


def test_failed_outcome_after_confirmation_is_rejected(services, appointment) -> None:
    services.payments.apply_payment_outcome(appointment.id, _outcome(), SETTLED_AT)

    with pytest.raises(InvalidAppointmentState):
        services.payments.apply_payment_outcome(appointment.id, _outcome('failed', 'txn_2'), SETTLED_AT)


def test_payment_for_cancelled_appointment_is_rejected(services, appointment) -> None:
    services.lifecycle.cancel(appointment.id, PATIENT_ID, SUNDAY_NOON)

    with pytest.raises(InvalidAppointmentState) as exception_info:
        services.payments.apply_payment_outcome(appointment.id, _outcome(), SETTLED_AT)

    assert exception_info.value.status == 'cancelled'


def test_payment_from_other_patient_is_rejected(services, appointment) -> None:
    with pytest.raises(ValidationError):
        services.payments.apply_payment_outcome(appointment.id, _outcome(patient_id=OTHER_PATIENT_ID), SETTLED_AT)


@pytest.mark.parametrize(
    'overrides',
    [
        {'payment_status': 'pending'},
        {'payment_method': 'cash'},
        {'amount': Decimal('0')},
        {'transaction_id': ''},
        {'doctor_id': 'doc-other'},
    ],
)
def test_malformed_outcomes_are_rejected(services, appointment, overrides) -> None:
    with pytest.raises(ValidationError):
        services.payments.apply_payment_outcome(appointment.id, _outcome(**overrides), SETTLED_AT)


def test_unknown_appointment_is_rejected(services) -> None:
    with pytest.raises(AppointmentNotFound):
        services.payments.apply_payment_outcome('missing', _outcome(), SETTLED_AT)


def test_quote_adds_platform_fee_to_consultation_fee(services, appointment) -> None:
    quote = services.payments.quote(appointment.id)

    assert quote.consultation_fee == Decimal('40.00')
    assert quote.platform_fee == Decimal('5.00')
    assert quote.total == Decimal('45.00')
    assert quote.currency == 'USD'


def test_default_provider() -> None:
    assert default_provider(PaymentMethod.CARD) == 'stripe'
    assert default_provider(PaymentMethod.INSURANCE) == 'insurance'
