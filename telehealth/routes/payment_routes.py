from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from telehealth.core import errors
from telehealth.core.state_machine import AppointmentStatus, PaymentMethod, PaymentStatus
from telehealth.routes.dependencies import current_time, ensure_database_ready, get_db, payment_gate, to_http_exception
from telehealth.routes.scheduling_routes import AppointmentResponse
from telehealth.services.payments import PaymentOutcome

router = APIRouter(tags=['payments'])

CONFIRMED_MESSAGE = 'Payment received. Your appointment is confirmed.'
FAILED_MESSAGE = 'Payment failed. Your booking is kept but is not confirmed until a payment succeeds.'


class PaymentOutcomeRequest(BaseModel):
    patient_id: str
    doctor_id: str | None = None
    amount: Decimal = Field(gt=0)
    currency: str = 'USD'
    payment_method: str
    payment_status: str
    transaction_id: str
    provider: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {method.value for method in PaymentMethod}:
            raise ValueError('Unsupported payment method.')
        return normalized

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value}:
            raise ValueError('Only completed or failed payment outcomes can be applied.')
        return normalized

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3:
            raise ValueError('Currency must be a three-letter code.')
        return normalized

    @field_validator('transaction_id', 'patient_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Value is required.')
        return normalized


class SettlementResponse(BaseModel):
    appointment: AppointmentResponse
    payment_status: str
    confirmed: bool
    message: str


class PaymentQuoteResponse(BaseModel):
    appointment_id: str
    consultation_fee: Decimal
    platform_fee: Decimal
    total: Decimal
    currency: str


class PaymentResponse(BaseModel):
    id: str
    appointment_id: str
    amount: Decimal
    currency: str
    payment_method: str
    payment_status: str
    transaction_id: str
    provider: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get('/appointments/{appointment_id}/quote', response_model=PaymentQuoteResponse)
def get_payment_quote(appointment_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        quote = payment_gate(db).quote(appointment_id)
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return PaymentQuoteResponse(
        appointment_id=quote.appointment_id,
        consultation_fee=quote.consultation_fee,
        platform_fee=quote.platform_fee,
        total=quote.total,
        currency=quote.currency,
    )


@router.post('/appointments/{appointment_id}/settle', response_model=SettlementResponse)
def settle_payment(appointment_id: str, data: PaymentOutcomeRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    outcome = PaymentOutcome(
        patient_id=data.patient_id,
        doctor_id=data.doctor_id,
        amount=data.amount,
        currency=data.currency,
        payment_method=data.payment_method,
        payment_status=data.payment_status,
        transaction_id=data.transaction_id,
        provider=data.provider,
        metadata=data.metadata,
    )

    try:
        appointment = payment_gate(db).apply_payment_outcome(appointment_id, outcome, current_time())
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    confirmed = appointment.status != AppointmentStatus.SCHEDULED.value
    return SettlementResponse(
        appointment=AppointmentResponse.model_validate(appointment),
        payment_status=data.payment_status,
        confirmed=confirmed,
        message=CONFIRMED_MESSAGE if confirmed else FAILED_MESSAGE,
    )


@router.get('/appointments/{appointment_id}', response_model=list[PaymentResponse])
def list_payments(appointment_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        payments = payment_gate(db).list_payments(appointment_id)
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [PaymentResponse.model_validate(payment) for payment in payments]
