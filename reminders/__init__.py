"""
Appointment reminder service - the scheduled notification pipeline of the
government appointment booking portal.

build_reminder_service() is the composition root used by main.py; tests
build the same object graph from fakes.
"""

from dataclasses import dataclass

import pytz

from .appointments import AppointmentSnapshot, Contact, SqlAppointmentStore, Timeslot
from .config import ReminderSettings, get_reminder_settings
from .database import close_engine, get_connection, get_transaction, is_configured, ping
from .notifications import (
    NotificationDispatcher,
    NotificationLedger,
    ReminderBatchProcessor,
    SchedulerSupervisor,
)
from .notifications.channels.email import SendGridMailTransport
from .notifications.errors import InvalidScheduleError
from .timezone import Clock


@dataclass
class ReminderService:
    """The wired-up pipeline: one instance per process."""

    ledger: NotificationLedger
    dispatcher: NotificationDispatcher
    processor: ReminderBatchProcessor
    supervisor: SchedulerSupervisor


def build_reminder_service(settings: ReminderSettings | None = None) -> ReminderService:
    """
    Wire the production collaborators (Postgres ledger/store, SendGrid, real clock).

    Raises:
        InvalidScheduleError: REMINDER_TIMEZONE is not a known zone
    """
    settings = settings or get_reminder_settings()

    try:
        clock = Clock(settings.timezone)
    except pytz.UnknownTimeZoneError as e:
        raise InvalidScheduleError(f"Unknown timezone {settings.timezone!r}") from e

    ledger = NotificationLedger()
    dispatcher = NotificationDispatcher(
        ledger,
        SendGridMailTransport(http_timeout=settings.send_timeout),
        rate_limit=settings.rate_limit,
        send_timeout=settings.send_timeout,
    )
    processor = ReminderBatchProcessor(
        store=SqlAppointmentStore(ledger),
        ledger=ledger,
        dispatcher=dispatcher,
        clock=clock,
        max_workers=settings.max_workers,
    )
    supervisor = SchedulerSupervisor(
        processor,
        clock,
        cron_schedule=settings.cron_schedule,
        overlap_policy=settings.overlap_policy,
    )
    return ReminderService(
        ledger=ledger, dispatcher=dispatcher, processor=processor, supervisor=supervisor
    )


__all__ = [
    "AppointmentSnapshot",
    "Contact",
    "Timeslot",
    "SqlAppointmentStore",
    "ReminderSettings",
    "get_reminder_settings",
    "get_connection",
    "get_transaction",
    "close_engine",
    "is_configured",
    "ping",
    "Clock",
    "ReminderService",
    "build_reminder_service",
]
