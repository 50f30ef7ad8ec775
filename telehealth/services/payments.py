"""Payment gate: confirmation is withheld until a completed payment arrives.

The core never talks to a payment network. The payment collaborator settles
externally and reports the outcome here.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from telehealth.core import config
from telehealth.core.errors import (
    AppointmentNotFound,
    DoctorNotFound,
    DuplicatePayment,
    InvalidAppointmentState,
    ValidationError,
)
from telehealth.core.state_machine import AppointmentStatus, PaymentMethod, PaymentStatus
from telehealth.models.appointment import Appointment
from telehealth.models.payment import Payment
from telehealth.repositories.interfaces import AppointmentRepository, AvailabilityRepository, PaymentRepository
from telehealth.services.appointments import advance
from telehealth.services.events import EventPublisher

logger = logging.getLogger(__name__)

SETTLED_OUTCOMES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED}
PAID_STATUSES = {AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS}
CLOSED_STATUSES = {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}


@dataclass(frozen=True)
class PaymentOutcome:
    """A settled payment as reported by the payment collaborator."""
    patient_id: str
    amount: Decimal
    currency: str
    payment_method: str
    payment_status: str
    transaction_id: str
    provider: str | None = None
    doctor_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentQuote:
    appointment_id: str
    consultation_fee: Decimal
    platform_fee: Decimal
    total: Decimal
    currency: str


def default_provider(method: PaymentMethod) -> str:
    return 'stripe' if method is PaymentMethod.CARD else method.value


class PaymentGate:
    def __init__(
        self,
        availability: AvailabilityRepository,
        appointments: AppointmentRepository,
        payments: PaymentRepository,
        events: EventPublisher,
        platform_fee: Decimal = config.PLATFORM_FEE,
        currency: str = config.PAYMENT_CURRENCY,
    ) -> None:
        self._availability = availability
        self._appointments = appointments
        self._payments = payments
        self._events = events
        self._platform_fee = platform_fee
        self._currency = currency

    def quote(self, appointment_id: str) -> PaymentQuote:
        """Amount the payment collaborator should charge at checkout."""
        appointment = self._load(appointment_id)
        doctor = self._availability.get_doctor(appointment.doctor_id)
        if doctor is None:
            raise DoctorNotFound(appointment.doctor_id)

        fee = Decimal(doctor.consultation_fee or 0).quantize(Decimal('0.01'))
        return PaymentQuote(
            appointment_id=appointment.id,
            consultation_fee=fee,
            platform_fee=self._platform_fee,
            total=fee + self._platform_fee,
            currency=self._currency,
        )

    def list_payments(self, appointment_id: str) -> list[Payment]:
        self._load(appointment_id)
        return self._payments.list_for_appointment(appointment_id)

    def apply_payment_outcome(self, appointment_id: str, outcome: PaymentOutcome, now: datetime) -> Appointment:
        """Apply a completed or failed payment to the appointment.

        A completed outcome moves ``scheduled -> confirmed``; repeating it is a
        no-op. A failed outcome keeps the booking ``scheduled`` so the patient
        can pay again or cancel.
        """
        appointment = self._load(appointment_id)
        payment_status, method = self._validate(appointment, outcome)

        status = AppointmentStatus(appointment.status)
        if status in CLOSED_STATUSES:
            logger.warning('Payment %s rejected: appointment %s is %s', outcome.transaction_id, appointment.id, status.value)
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                f'Appointment is {status.value}; payment cannot be applied.',
            )

        if payment_status is PaymentStatus.COMPLETED:
            return self._apply_completed(appointment, status, outcome, method, now)
        return self._apply_failed(appointment, status, outcome, method, now)

    def _apply_completed(
        self,
        appointment: Appointment,
        status: AppointmentStatus,
        outcome: PaymentOutcome,
        method: PaymentMethod,
        now: datetime,
    ) -> Appointment:
        if status in PAID_STATUSES:
            stored = self._payments.get_by_transaction_id(outcome.transaction_id)
            if stored is None:
                logger.warning(
                    'Appointment %s already %s; rejecting extra charge %s',
                    appointment.id,
                    status.value,
                    outcome.transaction_id,
                )
                raise DuplicatePayment(appointment.id, outcome.transaction_id)
            self._check_replay(stored, appointment, outcome)
            logger.info('Appointment %s already %s; payment %s is a no-op', appointment.id, status.value, outcome.transaction_id)
            return appointment

        payment, created = self._payments.record(self._build_payment(appointment, outcome, method, now))
        if not created:
            self._check_replay(payment, appointment, outcome)

        return advance(
            self._appointments,
            self._events,
            appointment.id,
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.CONFIRMED,
            now,
        )

    def _apply_failed(
        self,
        appointment: Appointment,
        status: AppointmentStatus,
        outcome: PaymentOutcome,
        method: PaymentMethod,
        now: datetime,
    ) -> Appointment:
        if status is not AppointmentStatus.SCHEDULED:
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                'Payment for this appointment has already been settled.',
            )

        payment, created = self._payments.record(self._build_payment(appointment, outcome, method, now))
        if not created:
            self._check_replay(payment, appointment, outcome)

        logger.warning(
            'Payment %s failed for appointment %s; booking kept as scheduled',
            outcome.transaction_id,
            appointment.id,
        )
        return self._load(appointment.id)

    def _check_replay(self, stored: Payment, appointment: Appointment, outcome: PaymentOutcome) -> None:
        if stored.transaction_id != outcome.transaction_id:
            logger.warning(
                'Appointment %s already has completed payment %s; rejecting extra charge %s',
                appointment.id,
                stored.transaction_id,
                outcome.transaction_id,
            )
            raise DuplicatePayment(appointment.id, outcome.transaction_id)
        if stored.appointment_id != appointment.id:
            raise ValidationError('This transaction was already applied to a different appointment.')
        if stored.payment_status != outcome.payment_status:
            raise ValidationError(f'Transaction {outcome.transaction_id} was already recorded as {stored.payment_status}.')

    def _validate(self, appointment: Appointment, outcome: PaymentOutcome) -> tuple[PaymentStatus, PaymentMethod]:
        try:
            payment_status = PaymentStatus(outcome.payment_status)
        except ValueError as exc:
            raise ValidationError('Unknown payment status.') from exc
        if payment_status not in SETTLED_OUTCOMES:
            raise ValidationError('Only completed or failed payment outcomes can be applied.')

        try:
            method = PaymentMethod(outcome.payment_method)
        except ValueError as exc:
            raise ValidationError('Unsupported payment method.') from exc

        if not outcome.transaction_id:
            raise ValidationError('Transaction id is required.')
        if outcome.amount <= 0:
            raise ValidationError('Payment amount must be positive.')
        if outcome.patient_id != appointment.patient_id:
            raise ValidationError('Payment does not belong to the patient of this appointment.')
        if outcome.doctor_id is not None and outcome.doctor_id != appointment.doctor_id:
            raise ValidationError('Payment does not belong to the doctor of this appointment.')

        return payment_status, method

    def _build_payment(
        self,
        appointment: Appointment,
        outcome: PaymentOutcome,
        method: PaymentMethod,
        now: datetime,
    ) -> Payment:
        return Payment(
            id=str(uuid4()),
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_id=appointment.id,
            amount=outcome.amount,
            currency=outcome.currency.upper(),
            payment_method=method.value,
            payment_status=outcome.payment_status,
            transaction_id=outcome.transaction_id,
            provider=outcome.provider or default_provider(method),
            details=dict(outcome.metadata),
            created_at=now,
            updated_at=now,
        )

    def _load(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment
