"""Video session lifecycle, kept in lock-step with the appointment status.

session:     (none) -> active -> ended
appointment: confirmed -> in_progress -> completed
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from telehealth.core import config
from telehealth.core.errors import (
    AppointmentNotFound,
    InvalidAppointmentState,
    SessionNotFound,
    StateError,
    TooEarly,
    Unauthorized,
)
from telehealth.core.state_machine import AppointmentStatus, AppointmentType, SessionStatus
from telehealth.models.appointment import Appointment
from telehealth.models.doctor import Doctor
from telehealth.models.video_session import VideoSession
from telehealth.repositories.interfaces import AppointmentRepository, AvailabilityRepository, SessionRepository
from telehealth.services.appointments import DOCTOR_ROLE, PATIENT_ROLE, advance, participant_role
from telehealth.services.events import EventPublisher

logger = logging.getLogger(__name__)

JOINABLE_STATUSES = {AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS}
SESSION_APPOINTMENT_STATUSES = JOINABLE_STATUSES | {AppointmentStatus.COMPLETED}


@dataclass(frozen=True)
class MediaState:
    """Client-side call controls. Never persisted."""
    session_id: str
    audio_enabled: bool
    video_enabled: bool
    screen_sharing: bool


class VideoSessionManager:
    def __init__(
        self,
        availability: AvailabilityRepository,
        appointments: AppointmentRepository,
        sessions: SessionRepository,
        events: EventPublisher,
        join_window_minutes: int = config.JOIN_WINDOW_MINUTES,
        room_base_url: str = config.VIDEO_ROOM_BASE_URL,
    ) -> None:
        self._availability = availability
        self._appointments = appointments
        self._sessions = sessions
        self._events = events
        self._join_window = timedelta(minutes=join_window_minutes)
        self._room_base_url = room_base_url

    def earliest_join_at(self, appointment: Appointment) -> datetime:
        return appointment.appointment_date - self._join_window

    def start(self, appointment_id: str, requester_id: str, now: datetime) -> VideoSession:
        """Open the appointment's session, or return it if it is already active."""
        appointment = self._load_appointment(appointment_id)
        doctor = self._availability.get_doctor(appointment.doctor_id)
        self._authorize(appointment, doctor, requester_id)

        existing = self._sessions.get_for_appointment(appointment.id)
        if existing is not None:
            return self._rejoin(existing, appointment, requester_id, now)

        status = AppointmentStatus(appointment.status)
        if status is AppointmentStatus.SCHEDULED:
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                'This appointment is not confirmed yet. Complete payment before joining.',
            )
        if status is not AppointmentStatus.CONFIRMED:
            raise InvalidAppointmentState(appointment.id, appointment.status)
        if appointment.type != AppointmentType.VIRTUAL.value:
            raise InvalidAppointmentState(
                appointment.id,
                appointment.status,
                'In-person appointments do not have a video session.',
            )

        earliest = self.earliest_join_at(appointment)
        if now < earliest:
            logger.info('Appointment %s joined too early by %s (opens %s)', appointment.id, requester_id, earliest)
            raise TooEarly(appointment.id, earliest)

        session, created = self._sessions.create_if_absent(
            self._build_session(appointment, doctor, requester_id, now)
        )
        if not created:
            # A concurrent start won; converge on its session.
            return self._rejoin(session, appointment, requester_id, now)

        logger.info('Started video session %s for appointment %s', session.session_id, appointment.id)
        try:
            advance(
                self._appointments,
                self._events,
                appointment.id,
                AppointmentStatus.CONFIRMED,
                AppointmentStatus.IN_PROGRESS,
                now,
            )
        except InvalidAppointmentState:
            # Cancelled or marked absent while the session was being created.
            self._abandon(session, now)
            raise
        return session

    def end(self, session_id: str, requester_id: str, now: datetime) -> VideoSession:
        """End the call and complete the appointment. Ending twice is a no-op."""
        session = self._load_session(session_id)
        appointment = self._load_appointment(session.appointment_id)
        doctor = self._availability.get_doctor(appointment.doctor_id)
        self._authorize(appointment, doctor, requester_id)

        status = AppointmentStatus(appointment.status)
        if status not in SESSION_APPOINTMENT_STATUSES:
            self._abandon(session, now)
            raise InvalidAppointmentState(appointment.id, appointment.status)

        if session.status == SessionStatus.ACTIVE.value:
            duration = max(0, int((now - session.started_at).total_seconds())) if session.started_at else 0
            ended = self._sessions.end(session.id, now, duration)
            if ended is None:
                ended = self._load_session(session.id)
            else:
                logger.info('Ended video session %s after %s seconds', ended.session_id, duration)
            session = ended

        if session.status != SessionStatus.ENDED.value:
            raise StateError('This video session is not active.')

        if status is AppointmentStatus.CONFIRMED:
            # The session opened but the appointment never reached in_progress.
            status = AppointmentStatus(
                advance(
                    self._appointments,
                    self._events,
                    appointment.id,
                    AppointmentStatus.CONFIRMED,
                    AppointmentStatus.IN_PROGRESS,
                    now,
                ).status
            )
        if status is not AppointmentStatus.COMPLETED:
            advance(
                self._appointments,
                self._events,
                appointment.id,
                AppointmentStatus.IN_PROGRESS,
                AppointmentStatus.COMPLETED,
                now,
            )
        return session

    def set_media_state(
        self,
        session_id: str,
        requester_id: str,
        audio_enabled: bool,
        video_enabled: bool,
        screen_sharing: bool,
    ) -> MediaState:
        session = self._load_session(session_id)
        appointment = self._load_appointment(session.appointment_id)
        self._authorize(appointment, self._availability.get_doctor(appointment.doctor_id), requester_id)
        if session.status != SessionStatus.ACTIVE.value:
            raise StateError('This video session is not active.')

        return MediaState(
            session_id=session.id,
            audio_enabled=audio_enabled,
            video_enabled=video_enabled,
            screen_sharing=screen_sharing,
        )

    def _rejoin(self, session: VideoSession, appointment: Appointment, requester_id: str, now: datetime) -> VideoSession:
        if session.status != SessionStatus.ACTIVE.value:
            raise InvalidAppointmentState(appointment.id, appointment.status, 'This consultation has already ended.')
        if AppointmentStatus(appointment.status) not in JOINABLE_STATUSES:
            self._abandon(session, now)
            raise InvalidAppointmentState(appointment.id, appointment.status)

        if appointment.status == AppointmentStatus.CONFIRMED.value:
            # An earlier start created the session but did not finish the appointment move.
            advance(
                self._appointments,
                self._events,
                appointment.id,
                AppointmentStatus.CONFIRMED,
                AppointmentStatus.IN_PROGRESS,
                now,
            )
        return self._sessions.record_join(session.id, requester_id, now)

    def _abandon(self, session: VideoSession, now: datetime) -> None:
        if self._sessions.fail(session.id, now) is not None:
            logger.warning('Video session %s failed: appointment %s is no longer joinable', session.session_id, session.appointment_id)

    def _build_session(self, appointment: Appointment, doctor: Doctor | None, requester_id: str, now: datetime) -> VideoSession:
        doctor_user_id = doctor.user_id if doctor is not None else None
        participants = [
            {'user_id': appointment.patient_id, 'role': PATIENT_ROLE, 'joined_at': None},
            {'user_id': doctor_user_id, 'role': DOCTOR_ROLE, 'joined_at': None},
        ]
        for participant in participants:
            if participant['user_id'] == requester_id:
                participant['joined_at'] = now.isoformat()

        return VideoSession(
            id=str(uuid4()),
            appointment_id=appointment.id,
            session_id=f'session_{uuid4().hex}',
            room_url=f'{self._room_base_url}/{appointment.id}',
            status=SessionStatus.ACTIVE.value,
            started_at=now,
            participants=participants,
            created_at=now,
        )

    def _authorize(self, appointment: Appointment, doctor: Doctor | None, requester_id: str) -> None:
        if participant_role(appointment, doctor, requester_id) is None:
            logger.warning('Requester %s rejected for appointment %s session', requester_id, appointment.id)
            raise Unauthorized(requester_id)

    def _load_appointment(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _load_session(self, session_id: str) -> VideoSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session
