"""Appointment, payment and video-session status values and their allowed moves."""

from enum import Enum


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    def can_transition_to(self, new_status: "AppointmentStatus") -> bool:
        """Validate a status change.

        State machine:
        - scheduled -> confirmed, cancelled, no_show
        - confirmed -> in_progress, cancelled, no_show
        - in_progress -> completed
        - completed, cancelled, no_show -> (final)
        """
        return new_status in _TRANSITIONS[self]

    def is_final(self) -> bool:
        return not _TRANSITIONS[self]

    def occupies_slot(self) -> bool:
        return self in OCCUPYING_STATUSES

    def allows_cancellation(self) -> bool:
        return self.can_transition_to(AppointmentStatus.CANCELLED)


_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Statuses that hold a (doctor, instant) pair. Keep in sync with the partial
# unique index on appointments.
OCCUPYING_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }
)


class AppointmentType(str, Enum):
    VIRTUAL = "virtual"
    IN_PERSON = "in_person"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"
    INSURANCE = "insurance"


class SessionStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    ENDED = "ended"
    FAILED = "failed"
