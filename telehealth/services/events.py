"""Publish-on-commit notifications for appointment status transitions.

Services publish a ``TransitionEvent`` only after the new status has been
committed. Subscribers (the reminder/notification collaborator, UI push
channels) own their own delivery and retry semantics.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Protocol

from telehealth.core.state_machine import AppointmentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionEvent:
    appointment_id: str
    patient_id: str
    doctor_id: str
    appointment_date: datetime
    previous_status: AppointmentStatus | None
    new_status: AppointmentStatus
    occurred_at: datetime

    @classmethod
    def for_appointment(cls, appointment, previous_status: AppointmentStatus | None, occurred_at: datetime) -> "TransitionEvent":
        return cls(
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_date=appointment.appointment_date,
            previous_status=previous_status,
            new_status=AppointmentStatus(appointment.status),
            occurred_at=occurred_at,
        )


EventHandler = Callable[[TransitionEvent], None]


class EventPublisher(Protocol):
    def publish(self, event: TransitionEvent) -> None:
        ...


class EventBus:
    """In-process fan-out of transition events to subscribed handlers."""

    def __init__(self) -> None:
        self._subscriptions: list[tuple[EventHandler, frozenset[AppointmentStatus] | None]] = []
        self._lock = Lock()

    def subscribe(
        self,
        handler: EventHandler,
        statuses: Iterable[AppointmentStatus] | None = None,
    ) -> Callable[[], None]:
        """Register ``handler``; returns a callable that removes it again."""
        subscription = (handler, frozenset(statuses) if statuses is not None else None)
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, event: TransitionEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)

        for handler, statuses in subscriptions:
            if statuses is not None and event.new_status not in statuses:
                continue
            try:
                handler(event)
            except Exception:
                # The transition is already committed; a failing subscriber must not undo it.
                logger.exception(
                    'Transition subscriber %r failed for appointment %s (%s)',
                    handler,
                    event.appointment_id,
                    event.new_status.value,
                )


class NotificationPort(Protocol):
    """Reminder/notification collaborator."""

    def appointment_scheduled(self, event: TransitionEvent) -> None:
        ...

    def appointment_confirmed(self, event: TransitionEvent) -> None:
        ...


class LoggingNotifier:
    """Default collaborator used until a delivery channel is configured."""

    def appointment_scheduled(self, event: TransitionEvent) -> None:
        logger.info('Appointment %s scheduled for %s', event.appointment_id, event.appointment_date.isoformat())

    def appointment_confirmed(self, event: TransitionEvent) -> None:
        logger.info('Appointment %s confirmed for %s', event.appointment_id, event.appointment_date.isoformat())


def connect_notifier(bus: EventBus, notifier: NotificationPort) -> Callable[[], None]:
    """Forward scheduled/confirmed transitions to ``notifier``."""

    def forward(event: TransitionEvent) -> None:
        if event.new_status is AppointmentStatus.SCHEDULED:
            notifier.appointment_scheduled(event)
        else:
            notifier.appointment_confirmed(event)

    return bus.subscribe(forward, statuses=[AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED])


event_bus = EventBus()
