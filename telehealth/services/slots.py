"""Bookable slot generation from weekly availability.

Slots are never stored; they are derived from the doctor's recurring
windows, the appointments already on that day and a caller-supplied ``now``.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from telehealth.core.errors import DoctorNotFound
from telehealth.core.state_machine import AppointmentStatus
from telehealth.models.appointment import Appointment
from telehealth.models.doctor import AvailabilityWindow, Doctor
from telehealth.repositories.interfaces import AppointmentRepository, AvailabilityRepository

logger = logging.getLogger(__name__)

SLOT_INCREMENT_MINUTES = 30


@dataclass(frozen=True)
class Slot:
    date: date
    time: time
    available: bool
    conflicting_appointment_id: str | None = None

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.time)


def portal_day_of_week(day: date) -> int:
    """Weekday in the availability store's convention (0 = Sunday)."""
    return (day.weekday() + 1) % 7


def iterate_slot_starts(target_date: date, window_start: time, window_end: time) -> Iterator[datetime]:
    """Whole 30-minute slots inside ``[window_start, window_end)`` on ``target_date``."""
    step = timedelta(minutes=SLOT_INCREMENT_MINUTES)
    current = datetime.combine(target_date, window_start).replace(second=0, microsecond=0)
    end = datetime.combine(target_date, window_end)

    while current + step <= end:
        yield current
        current += step


def generate_slots(
    doctor: Doctor,
    availability: Iterable[AvailabilityWindow],
    existing_appointments: Iterable[Appointment],
    target_date: date,
    now: datetime,
) -> Iterator[Slot]:
    day_of_week = portal_day_of_week(target_date)
    windows = sorted(
        (
            window for window in availability
            if window.doctor_id == doctor.id and window.is_available and window.day_of_week == day_of_week
        ),
        key=lambda window: window.start_time,
    )
    occupied = {
        appointment.appointment_date.replace(second=0, microsecond=0): appointment.id
        for appointment in existing_appointments
        if appointment.doctor_id == doctor.id and AppointmentStatus(appointment.status).occupies_slot()
    }

    seen: set[datetime] = set()
    for window in windows:
        if window.start_time >= window.end_time:
            logger.warning(
                'Skipping availability window %s for doctor %s: start %s is not before end %s',
                window.id,
                doctor.id,
                window.start_time,
                window.end_time,
            )
            continue

        # Overlapping windows for the same day are not rejected upstream.
        for starts_at in iterate_slot_starts(target_date, window.start_time, window.end_time):
            if starts_at in seen:
                continue
            seen.add(starts_at)

            conflicting_id = occupied.get(starts_at)
            yield Slot(
                date=target_date,
                time=starts_at.time(),
                available=conflicting_id is None and starts_at > now,
                conflicting_appointment_id=conflicting_id,
            )


class SlotService:
    """Loads what ``generate_slots`` needs from storage."""

    def __init__(self, availability: AvailabilityRepository, appointments: AppointmentRepository) -> None:
        self._availability = availability
        self._appointments = appointments

    def load_doctor(self, doctor_id: str) -> Doctor:
        doctor = self._availability.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFound(doctor_id)
        return doctor

    def slots_for(self, doctor: Doctor, target_date: date, now: datetime) -> Iterator[Slot]:
        day_start = datetime.combine(target_date, time.min)
        existing = self._appointments.list_for_doctor_between(
            doctor.id,
            day_start,
            day_start + timedelta(days=1),
        )
        windows = self._availability.list_windows(doctor.id)
        return generate_slots(doctor, windows, existing, target_date, now)

    def list_slots(self, doctor_id: str, target_date: date, now: datetime) -> list[Slot]:
        doctor = self.load_doctor(doctor_id)
        return list(self.slots_for(doctor, target_date, now))

    def find_slot(self, doctor: Doctor, target_date: date, slot_time: time, now: datetime) -> Slot | None:
        wanted = slot_time.replace(second=0, microsecond=0)
        for slot in self.slots_for(doctor, target_date, now):
            if slot.time == wanted:
                return slot
        return None
