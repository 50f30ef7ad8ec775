"""Typed failures raised by the scheduling core.

Every rejected operation raises one of these instead of returning a flag.
The HTTP layer maps each category onto a status code, see
``telehealth.routes.dependencies.to_http_exception``.
"""

from datetime import datetime


class SchedulingError(Exception):
    """Base class. ``detail`` is safe to show to the patient or doctor."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(SchedulingError):
    """Malformed input: bad date, unknown doctor, unsupported value."""


class DoctorNotFound(ValidationError):
    def __init__(self, doctor_id: str) -> None:
        super().__init__('Doctor not found.')
        self.doctor_id = doctor_id


class AppointmentNotFound(ValidationError):
    def __init__(self, appointment_id: str) -> None:
        super().__init__('Appointment not found.')
        self.appointment_id = appointment_id


class SessionNotFound(ValidationError):
    def __init__(self, session_id: str) -> None:
        super().__init__('Video session not found.')
        self.session_id = session_id


class ConflictError(SchedulingError):
    """A concurrent writer won the race for the same resource."""


class SlotAlreadyBooked(ConflictError):
    def __init__(self, doctor_id: str, appointment_date: datetime) -> None:
        super().__init__('This time slot is no longer available. Please choose another time.')
        self.doctor_id = doctor_id
        self.appointment_date = appointment_date


class StateError(SchedulingError):
    """The operation is not valid for the current appointment or session status."""


class InvalidAppointmentState(StateError):
    def __init__(self, appointment_id: str, status: str, detail: str | None = None) -> None:
        super().__init__(detail or f'Appointment is {status} and cannot be changed this way.')
        self.appointment_id = appointment_id
        self.status = status


class TooEarly(StateError):
    def __init__(self, appointment_id: str, earliest_join_at: datetime) -> None:
        super().__init__(
            f'The consultation can be joined from {earliest_join_at:%Y-%m-%d %H:%M}.'
        )
        self.appointment_id = appointment_id
        self.earliest_join_at = earliest_join_at


class AuthorizationError(SchedulingError):
    """The requester does not take part in the appointment."""


class Unauthorized(AuthorizationError):
    def __init__(self, requester_id: str, detail: str | None = None) -> None:
        super().__init__(detail or 'Only participants of this appointment can do that.')
        self.requester_id = requester_id


class UpstreamUncertain(SchedulingError):
    """A storage call failed in a way that leaves its outcome unknown.

    Callers should re-read the appointment before issuing another mutating call.
    """

    def __init__(self, operation: str) -> None:
        super().__init__('The outcome of this request is unknown. Refresh the appointment before retrying.')
        self.operation = operation


class DuplicatePayment(StateError):
    """A second completed charge arrived for an appointment that is already paid."""

    def __init__(self, appointment_id: str, transaction_id: str) -> None:
        super().__init__('This appointment is already paid. The additional charge must be refunded.')
        self.appointment_id = appointment_id
        self.transaction_id = transaction_id
