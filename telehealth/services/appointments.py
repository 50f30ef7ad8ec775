"""Externally triggered appointment transitions and participant lookups."""

import logging
from datetime import datetime

from telehealth.core.errors import AppointmentNotFound, InvalidAppointmentState, Unauthorized, ValidationError
from telehealth.core.state_machine import AppointmentStatus
from telehealth.models.appointment import Appointment
from telehealth.models.doctor import Doctor
from telehealth.repositories.interfaces import AppointmentRepository, AvailabilityRepository
from telehealth.services.events import EventPublisher, TransitionEvent

logger = logging.getLogger(__name__)

PATIENT_ROLE = 'patient'
DOCTOR_ROLE = 'doctor'


def participant_role(appointment: Appointment, doctor: Doctor | None, requester_id: str) -> str | None:
    if requester_id == appointment.patient_id:
        return PATIENT_ROLE
    if doctor is not None and requester_id == doctor.user_id:
        return DOCTOR_ROLE
    return None


def advance(
    appointments: AppointmentRepository,
    events: EventPublisher,
    appointment_id: str,
    expected: AppointmentStatus,
    new_status: AppointmentStatus,
    now: datetime,
) -> Appointment:
    """Compare-and-swap ``expected -> new_status`` and publish on success.

    A lost race is fine when the winner already reached ``new_status``;
    anything else means the precondition no longer holds.
    """
    updated = appointments.transition(appointment_id, expected, new_status, now)
    if updated is not None:
        logger.info('Appointment %s moved %s -> %s', appointment_id, expected.value, new_status.value)
        events.publish(TransitionEvent.for_appointment(updated, expected, now))
        return updated

    current = appointments.get(appointment_id)
    if current is None:
        raise AppointmentNotFound(appointment_id)
    if current.status == new_status.value:
        return current

    logger.warning(
        'Appointment %s expected %s for move to %s but is %s',
        appointment_id,
        expected.value,
        new_status.value,
        current.status,
    )
    raise InvalidAppointmentState(appointment_id, current.status)


class AppointmentLifecycle:
    def __init__(
        self,
        availability: AvailabilityRepository,
        appointments: AppointmentRepository,
        events: EventPublisher,
    ) -> None:
        self._availability = availability
        self._appointments = appointments
        self._events = events

    def load(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def authorize(self, appointment: Appointment, requester_id: str) -> str:
        """Return the requester's role, or raise ``Unauthorized``."""
        doctor = self._availability.get_doctor(appointment.doctor_id)
        role = participant_role(appointment, doctor, requester_id)
        if role is None:
            logger.warning('Requester %s is not a participant of appointment %s', requester_id, appointment.id)
            raise Unauthorized(requester_id)
        return role

    def cancel(self, appointment_id: str, requester_id: str, now: datetime) -> Appointment:
        appointment = self.load(appointment_id)
        self.authorize(appointment, requester_id)

        status = AppointmentStatus(appointment.status)
        if not status.allows_cancellation():
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                'Only scheduled or confirmed appointments can be cancelled.',
            )

        return self._close(appointment, status, AppointmentStatus.CANCELLED, now)

    def mark_no_show(self, appointment_id: str, requester_id: str, now: datetime) -> Appointment:
        appointment = self.load(appointment_id)
        if self.authorize(appointment, requester_id) != DOCTOR_ROLE:
            raise Unauthorized(requester_id, 'Only the doctor can mark a patient as absent.')

        status = AppointmentStatus(appointment.status)
        if not status.can_transition_to(AppointmentStatus.NO_SHOW):
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                'Only scheduled or confirmed appointments can be marked as no-show.',
            )
        if now < appointment.appointment_date:
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                'A patient can only be marked absent once the appointment has started.',
            )

        return self._close(appointment, status, AppointmentStatus.NO_SHOW, now)

    def list_for_participant(self, requester_id: str) -> list[Appointment]:
        if not requester_id or not requester_id.strip():
            raise ValidationError('Requester id is required.')
        return self._appointments.list_for_participant(requester_id.strip())

    def _close(
        self,
        appointment: Appointment,
        observed: AppointmentStatus,
        new_status: AppointmentStatus,
        now: datetime,
    ) -> Appointment:
        updated = self._appointments.transition(appointment.id, observed, new_status, now)
        if updated is None:
            # Someone moved it between our read and write; re-check against the fresh status.
            current = self.load(appointment.id)
            if current.status == new_status.value:
                return current
            current_status = AppointmentStatus(current.status)
            if not current_status.can_transition_to(new_status):
                raise InvalidAppointmentState(current.id, current.status)
            return advance(self._appointments, self._events, current.id, current_status, new_status, now)

        logger.info('Appointment %s moved %s -> %s', appointment.id, observed.value, new_status.value)
        self._events.publish(TransitionEvent.for_appointment(updated, observed, now))
        return updated
