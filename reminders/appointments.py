"""
Read-only access to booked appointments for the reminder pipeline.

The booking API owns these tables; this module only turns a day's
appointments into AppointmentSnapshot objects.
"""

import logging
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.exc import SQLAlchemyError

from reminders.enums import REMINDABLE_APPOINTMENT_STATUSES
from reminders.notifications.errors import AppointmentFetchError

logger = logging.getLogger(__name__)


@dataclass
class Contact:
    """A citizen or officer as seen by notifications."""

    user_id: int
    email: str | None
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or "there"


@dataclass
class Timeslot:
    slot_date: date
    start_time: time | str | None = None
    end_time: time | str | None = None


@dataclass
class AppointmentSnapshot:
    """An appointment with everything needed to write its reminders."""

    appointment_id: int
    booking_reference: str
    citizen: Contact | None
    officer: Contact | None = None
    service_id: int | None = None
    service_name: str | None = None
    department_id: int | None = None
    department_name: str | None = None
    timeslot: Timeslot | None = None


def _snapshot_from_row(row) -> AppointmentSnapshot:
    citizen = None
    if row["citizen_id"] is not None:
        citizen = Contact(
            user_id=row["citizen_id"],
            email=row["citizen_email"],
            first_name=row["citizen_first_name"],
            last_name=row["citizen_last_name"],
            phone_number=row["citizen_phone"],
        )

    officer = None
    if row["officer_user_id"] is not None:
        officer = Contact(
            user_id=row["officer_user_id"],
            email=row["officer_email"],
            first_name=row["officer_first_name"],
            last_name=row["officer_last_name"],
        )

    timeslot = None
    if row["slot_date"] is not None:
        timeslot = Timeslot(
            slot_date=row["slot_date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
        )

    return AppointmentSnapshot(
        appointment_id=row["appointment_id"],
        booking_reference=row["booking_reference"],
        citizen=citizen,
        officer=officer,
        service_id=row["service_id"],
        service_name=row["service_name"],
        department_id=row["department_id"],
        department_name=row["department_name"],
        timeslot=timeslot,
    )


class SqlAppointmentStore:
    """
    Appointment store backed by the booking database.

    Args:
        ledger: NotificationLedger used to answer has_reminder_been_sent()
    """

    def __init__(self, ledger):
        self.ledger = ledger

    async def find_appointments_for_reminder(
        self, target_date: date
    ) -> list[AppointmentSnapshot]:
        """
        Load pending/confirmed appointments whose timeslot falls on target_date.

        Raises:
            AppointmentFetchError: The query failed
        """
        from sqlalchemy import select
        from reminders.database import get_connection
        from reminders.tables import (
            appointments,
            departments,
            officers,
            services,
            timeslots,
            users,
        )

        citizen = users.alias("citizen")
        officer_user = users.alias("officer_user")

        query = (
            select(
                appointments.c.id.label("appointment_id"),
                appointments.c.booking_reference,
                citizen.c.id.label("citizen_id"),
                citizen.c.email.label("citizen_email"),
                citizen.c.first_name.label("citizen_first_name"),
                citizen.c.last_name.label("citizen_last_name"),
                citizen.c.phone_number.label("citizen_phone"),
                officer_user.c.id.label("officer_user_id"),
                officer_user.c.email.label("officer_email"),
                officer_user.c.first_name.label("officer_first_name"),
                officer_user.c.last_name.label("officer_last_name"),
                services.c.id.label("service_id"),
                services.c.name.label("service_name"),
                departments.c.id.label("department_id"),
                departments.c.name.label("department_name"),
                timeslots.c.slot_date,
                timeslots.c.start_time,
                timeslots.c.end_time,
            )
            .select_from(
                appointments.join(timeslots, appointments.c.timeslot_id == timeslots.c.id)
                .outerjoin(citizen, appointments.c.user_id == citizen.c.id)
                .outerjoin(services, appointments.c.service_id == services.c.id)
                .outerjoin(departments, services.c.department_id == departments.c.id)
                .outerjoin(officers, appointments.c.officer_id == officers.c.id)
                .outerjoin(officer_user, officers.c.user_id == officer_user.c.id)
            )
            .where(timeslots.c.slot_date == target_date)
            .where(appointments.c.status.in_(REMINDABLE_APPOINTMENT_STATUSES))
            .order_by(appointments.c.created_at.asc())
        )

        try:
            async with get_connection() as conn:
                result = await conn.execute(query)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise AppointmentFetchError(
                f"Failed to find appointments for reminder on {target_date}: {e}"
            ) from e

        return [_snapshot_from_row(row) for row in rows]

    async def has_reminder_been_sent(self, appointment_id: int) -> bool:
        return await self.ledger.has_reminder_already_sent(appointment_id)
