from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from telehealth.core import errors
from telehealth.core.state_machine import AppointmentType
from telehealth.routes.dependencies import (
    appointment_lifecycle,
    booking_coordinator,
    current_time,
    ensure_database_ready,
    get_db,
    slot_service,
    to_http_exception,
)
from telehealth.services.booking import MAX_APPOINTMENT_NOTES_LENGTH

router = APIRouter(tags=['scheduling'])


def _require_identifier(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{label} is required.')
    return normalized


class SlotResponse(BaseModel):
    date: date
    time: time
    start_time: datetime
    available: bool
    conflicting_appointment_id: str | None = None


class CreateAppointmentRequest(BaseModel):
    patient_id: str
    doctor_id: str
    date: date
    time: time
    appointment_type: str = AppointmentType.VIRTUAL.value
    notes: str | None = None

    @field_validator('patient_id')
    @classmethod
    def validate_patient_id(cls, value: str) -> str:
        return _require_identifier(value, 'Patient id')

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        return _require_identifier(value, 'Doctor id')

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {kind.value for kind in AppointmentType}:
            raise ValueError('Invalid appointment type.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class ParticipantRequest(BaseModel):
    requester_id: str

    @field_validator('requester_id')
    @classmethod
    def validate_requester_id(cls, value: str) -> str:
        return _require_identifier(value, 'Requester id')


class AppointmentResponse(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    appointment_date: datetime
    duration_minutes: int
    type: str
    status: str
    notes: str | None = None
    reminder_sent: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get('/doctors/{doctor_id}/slots', response_model=list[SlotResponse])
def list_slots(
    doctor_id: str,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = slot_service(db).list_slots(doctor_id, slot_date, current_time())
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [
        SlotResponse(
            date=slot.date,
            time=slot.time,
            start_time=slot.starts_at,
            available=slot.available,
            conflicting_appointment_id=slot.conflicting_appointment_id,
        )
        for slot in slots
    ]


@router.post('/appointments', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = booking_coordinator(db).book(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            slot=data,
            appointment_type=data.appointment_type,
            notes=data.notes,
            now=current_time(),
        )
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.model_validate(appointment)


@router.get('/appointments', response_model=list[AppointmentResponse])
def list_my_appointments(
    requester_id: str = Query(...),
    db: Session = Depends(get_db),
):
    if not requester_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Requester id is required.',
        )

    ensure_database_ready()

    try:
        appointments = appointment_lifecycle(db).list_for_participant(requester_id)
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [AppointmentResponse.model_validate(appointment) for appointment in appointments]


@router.post('/appointments/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(appointment_id: str, data: ParticipantRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = appointment_lifecycle(db).cancel(appointment_id, data.requester_id, current_time())
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.model_validate(appointment)


@router.post('/appointments/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(appointment_id: str, data: ParticipantRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = appointment_lifecycle(db).mark_no_show(appointment_id, data.requester_id, current_time())
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AppointmentResponse.model_validate(appointment)
