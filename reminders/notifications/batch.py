"""
Reminder batch processor - one pass over tomorrow's appointments.

For each appointment on the target date:
    - skip it if a reminder is already on record (idempotency across runs)
    - remind the citizen
    - remind the assigned officer, if any

Per-appointment problems are counted in ReminderRunStats and never stop the
batch. Only failing to load the appointment list is a hard failure.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date

from reminders.enums import NotificationKind
from reminders.notifications.channels.email import markdown_to_html
from reminders.notifications.dispatcher import AppointmentDetails, DispatchRequest
from reminders.notifications.errors import AppointmentFetchError
from reminders.notifications.templates import get_message
from reminders.timezone import format_appointment_datetime

logger = logging.getLogger(__name__)


@dataclass
class ReminderRunStats:
    total_appointments: int = 0
    citizen_reminders_sent: int = 0
    officer_reminders_sent: int = 0
    duplicates_skipped: int = 0
    failures: int = 0
    processing_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "totalAppointments": self.total_appointments,
            "citizenRemindersSent": self.citizen_reminders_sent,
            "officerRemindersSent": self.officer_reminders_sent,
            "duplicatesSkipped": self.duplicates_skipped,
            "failures": self.failures,
            "processingTimeMs": self.processing_time_ms,
        }


@dataclass
class ReminderStatistics:
    """Dry-run view of a target date, for monitoring."""

    target_date: date
    scheduled: int = 0
    already_reminded: int = 0
    pending: int = 0

    def to_dict(self) -> dict:
        return {
            "targetDate": self.target_date.isoformat(),
            "scheduled": self.scheduled,
            "alreadyReminded": self.already_reminded,
            "pending": self.pending,
        }


@dataclass
class _AppointmentOutcome:
    """Result of one appointment's unit of work, aggregated by the caller."""

    citizen_sent: int = 0
    officer_sent: int = 0
    duplicate: int = 0
    failures: int = 0


def build_appointment_details(appointment, tz_name: str) -> AppointmentDetails:
    """Display fields for an appointment, with placeholders for anything missing."""
    timeslot = appointment.timeslot
    if timeslot is None:
        date_time = "Date/Time TBD"
    else:
        date_time = format_appointment_datetime(
            timeslot.slot_date, timeslot.start_time, timeslot.end_time, tz_name
        )

    return AppointmentDetails(
        appointment_id=appointment.appointment_id,
        booking_reference=appointment.booking_reference,
        service_name=appointment.service_name or "Unknown Service",
        department_name=appointment.department_name or "Unknown Department",
        date_time=date_time,
        officer_name=appointment.officer.full_name if appointment.officer else "To be assigned",
    )


def build_officer_reminder(appointment, details: AppointmentDetails) -> DispatchRequest:
    """Officer-facing reminder, including the citizen's contact details."""
    citizen = appointment.citizen
    officer = appointment.officer
    context = {
        "name": officer.full_name,
        "citizen_name": citizen.full_name if citizen else "Unknown citizen",
        "citizen_email": (citizen.email if citizen else None) or "Not provided",
        "citizen_phone": (citizen.phone_number if citizen else None) or "Not provided",
        **details.as_context(),
    }
    text_body = get_message("appointment_reminder_officer", "email_body", context)
    return DispatchRequest(
        user_id=officer.user_id,
        recipient_email=officer.email,
        subject=get_message("appointment_reminder_officer", "email_subject", context),
        text_body=text_body,
        html_body=markdown_to_html(text_body),
        summary=get_message("appointment_reminder_officer", "summary", context),
        kind=NotificationKind.appointment_reminder,
        appointment_id=appointment.appointment_id,
    )


class ReminderBatchProcessor:
    """
    Sends the day-before reminders for one target date per run.

    Args:
        store: Appointment store with async find_appointments_for_reminder(date)
        ledger: Notification ledger with async has_reminder_already_sent(id)
        dispatcher: NotificationDispatcher
        clock: Clock supplying "tomorrow" in the operational timezone
        max_workers: Appointments processed concurrently (1 = sequential)
    """

    def __init__(self, store, ledger, dispatcher, clock, max_workers: int = 1):
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.clock = clock
        self.max_workers = max(max_workers, 1)

    async def _fetch(self, target_date: date) -> list:
        try:
            return await self.store.find_appointments_for_reminder(target_date)
        except AppointmentFetchError:
            raise
        except Exception as e:
            raise AppointmentFetchError(
                f"Failed to find appointments for reminder on {target_date}: {e}"
            ) from e

    async def run_once(self, target_date: date | None = None) -> ReminderRunStats:
        """
        Remind everyone with an appointment on target_date (default: tomorrow).

        Raises:
            AppointmentFetchError: The appointment list could not be loaded
        """
        started = time.monotonic()
        stats = ReminderRunStats()
        target_date = target_date or self.clock.tomorrow()

        logger.info(f"Processing reminders for appointments on {target_date}")
        try:
            appointments = await self._fetch(target_date)
        except AppointmentFetchError as e:
            logger.error(f"Reminder run aborted: {e}")
            raise

        stats.total_appointments = len(appointments)
        logger.info(f"Found {len(appointments)} appointments scheduled for {target_date}")

        if self.max_workers == 1:
            outcomes = [await self._process_appointment(a) for a in appointments]
        else:
            semaphore = asyncio.Semaphore(self.max_workers)

            async def bounded(appointment):
                async with semaphore:
                    return await self._process_appointment(appointment)

            outcomes = await asyncio.gather(*(bounded(a) for a in appointments))

        for outcome in outcomes:
            stats.citizen_reminders_sent += outcome.citizen_sent
            stats.officer_reminders_sent += outcome.officer_sent
            stats.duplicates_skipped += outcome.duplicate
            stats.failures += outcome.failures

        stats.processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Reminder run for {target_date} completed: "
            f"{stats.citizen_reminders_sent} citizen, "
            f"{stats.officer_reminders_sent} officer reminders, "
            f"{stats.duplicates_skipped} duplicates skipped, "
            f"{stats.failures} failures in {stats.processing_time_ms}ms"
        )
        return stats

    async def _process_appointment(self, appointment) -> _AppointmentOutcome:
        """Remind one appointment's citizen and officer. Never raises."""
        outcome = _AppointmentOutcome()
        appointment_id = appointment.appointment_id

        try:
            if await self.ledger.has_reminder_already_sent(appointment_id):
                logger.info(f"Reminder already sent for appointment {appointment_id}, skipping")
                outcome.duplicate = 1
                return outcome
        except Exception as e:
            # Can't prove it wasn't sent; skip rather than risk a duplicate
            logger.error(
                f"Reminder lookup failed for appointment {appointment_id}, skipping: {e}"
            )
            outcome.failures += 1
            return outcome

        try:
            details = build_appointment_details(appointment, self.clock.tz_name)
            citizen = appointment.citizen

            if citizen and citizen.email:
                result = await self.dispatcher.send_appointment_reminder(
                    citizen.user_id, citizen.email, citizen.full_name, details
                )
                if result.sent:
                    outcome.citizen_sent += 1
                else:
                    logger.error(
                        f"Citizen reminder failed for appointment {appointment_id}: {result.reason}"
                    )
                    outcome.failures += 1
            else:
                logger.warning(f"Appointment {appointment_id} has no citizen email, skipping citizen reminder")

            officer = appointment.officer
            if officer and officer.email:
                result = await self.dispatcher.dispatch(
                    build_officer_reminder(appointment, details)
                )
                if result.sent:
                    outcome.officer_sent += 1
                else:
                    logger.error(
                        f"Officer reminder failed for appointment {appointment_id}: {result.reason}"
                    )
                    outcome.failures += 1
            else:
                logger.info(f"No officer assigned to appointment {appointment_id}, skipping officer reminder")
        except Exception as e:
            logger.error(
                f"Error processing reminder for appointment {appointment_id}: {e}",
                exc_info=True,
            )
            outcome.failures += 1

        return outcome

    async def get_statistics(self, target_date: date | None = None) -> ReminderStatistics:
        """
        Count appointments on target_date (default: tomorrow) and how many are
        already reminded, without sending anything.

        Raises:
            AppointmentFetchError: The appointment list could not be loaded
        """
        target_date = target_date or self.clock.tomorrow()
        appointments = await self._fetch(target_date)

        already_reminded = 0
        for appointment in appointments:
            try:
                if await self.ledger.has_reminder_already_sent(appointment.appointment_id):
                    already_reminded += 1
            except Exception as e:
                logger.warning(
                    f"Reminder lookup failed for appointment {appointment.appointment_id}: {e}"
                )

        return ReminderStatistics(
            target_date=target_date,
            scheduled=len(appointments),
            already_reminded=already_reminded,
            pending=len(appointments) - already_reminded,
        )
