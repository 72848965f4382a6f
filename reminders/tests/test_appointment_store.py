"""Tests for the SQL appointment store (database mocked)."""

from datetime import date, time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from reminders.appointments import Contact, SqlAppointmentStore
from reminders.notifications.errors import AppointmentFetchError


def make_row(**overrides) -> dict:
    row = {
        "appointment_id": 5,
        "booking_reference": "BK-000005",
        "citizen_id": 42,
        "citizen_email": "nimal@example.com",
        "citizen_first_name": "Nimal",
        "citizen_last_name": "Perera",
        "citizen_phone": "+94771234567",
        "officer_user_id": 77,
        "officer_email": "kamala@gov.example.lk",
        "officer_first_name": "Kamala",
        "officer_last_name": "Silva",
        "service_id": 7,
        "service_name": "Passport Renewal",
        "department_id": 3,
        "department_name": "Department of Immigration",
        "slot_date": date(2024, 1, 15),
        "start_time": time(9, 0),
        "end_time": time(9, 30),
    }
    row.update(overrides)
    return row


def mock_rows(mock_get_conn, rows):
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows
    mock_conn = AsyncMock()
    mock_conn.execute.return_value = result
    mock_get_conn.return_value.__aenter__.return_value = mock_conn
    mock_get_conn.return_value.__aexit__.return_value = None
    return mock_conn


class TestFindAppointmentsForReminder:
    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_maps_rows_to_snapshots(self, mock_get_conn):
        mock_rows(mock_get_conn, [make_row()])

        appointments = await SqlAppointmentStore(ledger=None).find_appointments_for_reminder(
            date(2024, 1, 15)
        )

        assert len(appointments) == 1
        appointment = appointments[0]
        assert appointment.appointment_id == 5
        assert appointment.citizen.full_name == "Nimal Perera"
        assert appointment.citizen.phone_number == "+94771234567"
        assert appointment.officer.user_id == 77
        assert appointment.officer.email == "kamala@gov.example.lk"
        assert appointment.timeslot.start_time == time(9, 0)
        assert appointment.department_name == "Department of Immigration"

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_unassigned_officer_is_none(self, mock_get_conn):
        mock_rows(
            mock_get_conn,
            [
                make_row(
                    officer_user_id=None,
                    officer_email=None,
                    officer_first_name=None,
                    officer_last_name=None,
                )
            ],
        )

        appointments = await SqlAppointmentStore(ledger=None).find_appointments_for_reminder(
            date(2024, 1, 15)
        )

        assert appointments[0].officer is None

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_filters_by_date_and_remindable_status(self, mock_get_conn):
        mock_conn = mock_rows(mock_get_conn, [])

        await SqlAppointmentStore(ledger=None).find_appointments_for_reminder(
            date(2024, 1, 15)
        )

        statement = mock_conn.execute.call_args[0][0]
        sql = str(statement)
        assert "timeslots.slot_date = " in sql
        assert "appointments.status IN" in sql
        params = statement.compile().params
        assert date(2024, 1, 15) in params.values()

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_database_error_becomes_fetch_error(self, mock_get_conn):
        mock_conn = mock_rows(mock_get_conn, [])
        mock_conn.execute.side_effect = OperationalError(
            "SELECT", {}, Exception("connection refused")
        )

        with pytest.raises(AppointmentFetchError):
            await SqlAppointmentStore(ledger=None).find_appointments_for_reminder(
                date(2024, 1, 15)
            )


class TestHasReminderBeenSent:
    @pytest.mark.asyncio
    async def test_delegates_to_ledger(self):
        ledger = MagicMock()
        ledger.has_reminder_already_sent = AsyncMock(return_value=True)

        assert await SqlAppointmentStore(ledger).has_reminder_been_sent(5) is True
        ledger.has_reminder_already_sent.assert_awaited_once_with(5)


class TestContact:
    def test_full_name_falls_back(self):
        assert Contact(user_id=1, email=None).full_name == "there"

    def test_full_name_with_first_name_only(self):
        assert Contact(user_id=1, email=None, first_name="Nimal").full_name == "Nimal"
