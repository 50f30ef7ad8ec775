"""Storage ports the scheduling services depend on.

Implementations: ``telehealth.repositories.sql`` (SQLAlchemy).
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from telehealth.core.state_machine import AppointmentStatus
from telehealth.models.appointment import Appointment
from telehealth.models.doctor import AvailabilityWindow, Doctor
from telehealth.models.payment import Payment
from telehealth.models.video_session import VideoSession


@runtime_checkable
class AvailabilityRepository(Protocol):
    """Read-only view of doctors and their weekly availability."""

    def get_doctor(self, doctor_id: str) -> Doctor | None:
        ...

    def list_windows(self, doctor_id: str) -> list[AvailabilityWindow]:
        """Enabled windows for the doctor, any day of the week."""
        ...


@runtime_checkable
class AppointmentRepository(Protocol):
    def get(self, appointment_id: str) -> Appointment | None:
        ...

    def list_for_doctor_between(self, doctor_id: str, start: datetime, end: datetime) -> list[Appointment]:
        ...

    def list_for_participant(self, requester_id: str) -> list[Appointment]:
        """Appointments where the requester is the patient or the doctor's user."""
        ...

    def insert_if_slot_free(self, appointment: Appointment) -> Appointment:
        """Atomically insert; raises ``SlotAlreadyBooked`` if the doctor/instant is occupied."""
        ...

    def transition(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        new_status: AppointmentStatus,
        now: datetime,
    ) -> Appointment | None:
        """Compare-and-swap the status. Returns ``None`` when ``expected`` no longer holds."""
        ...


@runtime_checkable
class PaymentRepository(Protocol):
    def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        ...

    def list_for_appointment(self, appointment_id: str) -> list[Payment]:
        ...

    def record(self, payment: Payment) -> tuple[Payment, bool]:
        """Persist a payment outcome.

        Returns the stored row and whether it was created by this call. A
        duplicate transaction id, or a second completed payment for the same
        appointment, returns the row already stored.
        """
        ...


@runtime_checkable
class SessionRepository(Protocol):
    def get(self, session_id: str) -> VideoSession | None:
        ...

    def get_for_appointment(self, appointment_id: str) -> VideoSession | None:
        ...

    def create_if_absent(self, session: VideoSession) -> tuple[VideoSession, bool]:
        """Insert the session unless the appointment already has one."""
        ...

    def record_join(self, session_id: str, user_id: str, joined_at: datetime) -> VideoSession:
        ...

    def end(self, session_id: str, ended_at: datetime, duration_seconds: int) -> VideoSession | None:
        """Move an ``active`` session to ``ended``. Returns ``None`` if it was not active."""
        ...

    def fail(self, session_id: str, ended_at: datetime) -> VideoSession | None:
        """Move an ``active`` session to ``failed``. Returns ``None`` if it was not active."""
        ...
