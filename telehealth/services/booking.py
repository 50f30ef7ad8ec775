import logging
from datetime import date, datetime, time
from typing import Protocol
from uuid import uuid4

from telehealth.core.errors import SlotAlreadyBooked, ValidationError
from telehealth.core.state_machine import AppointmentStatus, AppointmentType
from telehealth.models.appointment import Appointment
from telehealth.repositories.interfaces import AppointmentRepository
from telehealth.services.events import EventPublisher, TransitionEvent
from telehealth.services.slots import SLOT_INCREMENT_MINUTES, SlotService

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600


class SlotChoice(Protocol):
    date: date
    time: time


def normalize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None

    normalized = notes.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValidationError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def parse_appointment_type(value: str) -> AppointmentType:
    try:
        return AppointmentType(value.strip().lower())
    except ValueError as exc:
        raise ValidationError('Invalid appointment type.') from exc


class BookingCoordinator:
    """Turns an offered slot into a ``scheduled`` appointment."""

    def __init__(
        self,
        slots: SlotService,
        appointments: AppointmentRepository,
        events: EventPublisher,
    ) -> None:
        self._slots = slots
        self._appointments = appointments
        self._events = events

    def book(
        self,
        patient_id: str,
        doctor_id: str,
        slot: SlotChoice,
        appointment_type: str,
        notes: str | None,
        now: datetime,
    ) -> Appointment:
        """Re-validate ``slot`` against current bookings and insert the appointment.

        Raises:
            ValidationError: unknown doctor, bad type or notes, or a slot the
                doctor does not offer / that is no longer in the future.
            SlotAlreadyBooked: another appointment holds the slot. Re-query
                slots instead of retrying.
            UpstreamUncertain: storage failed; the insert may or may not have
                happened.
        """
        if not patient_id or not patient_id.strip():
            raise ValidationError('Patient id is required.')

        kind = parse_appointment_type(appointment_type)
        normalized_notes = normalize_notes(notes)
        doctor = self._slots.load_doctor(doctor_id)

        offered = self._slots.find_slot(doctor, slot.date, slot.time, now)
        if offered is None:
            raise ValidationError('The doctor does not offer this time.')
        if offered.conflicting_appointment_id is not None:
            logger.info('Slot %s for doctor %s already held by %s', offered.starts_at, doctor.id, offered.conflicting_appointment_id)
            raise SlotAlreadyBooked(doctor.id, offered.starts_at)
        if not offered.available:
            raise ValidationError('Appointments must be scheduled in the future.')

        appointment = Appointment(
            id=str(uuid4()),
            patient_id=patient_id.strip(),
            doctor_id=doctor.id,
            appointment_date=offered.starts_at,
            duration_minutes=SLOT_INCREMENT_MINUTES,
            type=kind.value,
            status=AppointmentStatus.SCHEDULED.value,
            notes=normalized_notes,
            reminder_sent=False,
            version=1,
            created_at=now,
            updated_at=now,
        )

        try:
            created = self._appointments.insert_if_slot_free(appointment)
        except SlotAlreadyBooked:
            logger.info('Lost booking race for doctor %s at %s', doctor.id, offered.starts_at)
            raise

        logger.info(
            'Booked appointment %s for patient %s with doctor %s at %s',
            created.id,
            created.patient_id,
            created.doctor_id,
            created.appointment_date.isoformat(),
        )
        self._events.publish(TransitionEvent.for_appointment(created, None, now))
        return created
