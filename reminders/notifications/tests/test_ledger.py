"""Tests for the SQLAlchemy notification ledger (database mocked)."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from reminders.enums import NotificationChannel, NotificationKind, NotificationStatus
from reminders.notifications.errors import NotFoundError, StorageError
from reminders.notifications.ledger import NotificationDraft, NotificationLedger


def make_row(**overrides) -> dict:
    row = {
        "id": 7,
        "user_id": 42,
        "appointment_id": 5,
        "type": "appointment_reminder",
        "method": "email",
        "message": "Reminder: You have an appointment tomorrow.",
        "status": "queued",
        "sent_at": None,
        "error_message": None,
    }
    row.update(overrides)
    return row


def mock_connection(mock_context, first=None, all_rows=None, scalar=None):
    """Wire a patched get_connection/get_transaction to return canned results."""
    result = MagicMock()
    result.mappings.return_value.first.return_value = first
    result.mappings.return_value.all.return_value = all_rows or []
    result.first.return_value = first
    result.scalar.return_value = scalar

    mock_conn = AsyncMock()
    mock_conn.execute.return_value = result
    mock_context.return_value.__aenter__.return_value = mock_conn
    mock_context.return_value.__aexit__.return_value = None
    return mock_conn


def db_down():
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


def bound_values(statement) -> list:
    values = []
    for value in statement.compile().params.values():
        values.extend(value if isinstance(value, (list, tuple)) else [value])
    return values


class TestCreate:
    @pytest.mark.asyncio
    @patch("reminders.database.get_transaction")
    async def test_creates_queued_record(self, mock_get_tx):
        mock_conn = mock_connection(mock_get_tx, first=make_row())

        record = await NotificationLedger().create(
            NotificationDraft(
                user_id=42,
                kind=NotificationKind.appointment_reminder,
                message="Reminder: You have an appointment tomorrow.",
                appointment_id=5,
            )
        )

        assert record.id == 7
        assert record.status == NotificationStatus.queued
        assert record.kind == NotificationKind.appointment_reminder
        assert record.channel == NotificationChannel.email
        statement = mock_conn.execute.call_args[0][0]
        assert "INSERT INTO notifications" in str(statement)

    @pytest.mark.asyncio
    @patch("reminders.database.get_transaction")
    async def test_database_error_becomes_storage_error(self, mock_get_tx):
        mock_conn = mock_connection(mock_get_tx)
        mock_conn.execute.side_effect = db_down()

        with pytest.raises(StorageError):
            await NotificationLedger().create(
                NotificationDraft(user_id=42, kind=NotificationKind.generic, message="Hi")
            )


class TestUpdateStatus:
    @pytest.mark.asyncio
    @patch("reminders.database.get_transaction")
    async def test_mark_as_sent(self, mock_get_tx):
        sent_at = datetime(2024, 1, 14, 3, 30, tzinfo=timezone.utc)
        mock_conn = mock_connection(
            mock_get_tx, first=make_row(status="sent", sent_at=sent_at)
        )

        record = await NotificationLedger().mark_as_sent(7)

        assert record.status == NotificationStatus.sent
        assert record.sent_at == sent_at
        statement = mock_conn.execute.call_args[0][0]
        assert "UPDATE notifications" in str(statement)

    @pytest.mark.asyncio
    @patch("reminders.database.get_transaction")
    async def test_mark_as_failed_stores_error(self, mock_get_tx):
        mock_connection(
            mock_get_tx, first=make_row(status="failed", error_message="timed out")
        )

        record = await NotificationLedger().mark_as_failed(7, "timed out")

        assert record.status == NotificationStatus.failed
        assert record.error_detail == "timed out"

    @pytest.mark.asyncio
    @patch("reminders.database.get_transaction")
    async def test_missing_record_raises_not_found(self, mock_get_tx):
        mock_connection(mock_get_tx, first=None)

        with pytest.raises(NotFoundError):
            await NotificationLedger().mark_as_sent(999)

    @pytest.mark.asyncio
    @patch("reminders.database.get_transaction")
    async def test_database_error_becomes_storage_error(self, mock_get_tx):
        mock_conn = mock_connection(mock_get_tx)
        mock_conn.execute.side_effect = db_down()

        with pytest.raises(StorageError):
            await NotificationLedger().mark_as_failed(7, "boom")


class TestQueries:
    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_find_by_id(self, mock_get_conn):
        mock_connection(mock_get_conn, first=make_row())

        record = await NotificationLedger().find_by_id(7)

        assert record.id == 7
        assert record.appointment_id == 5

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_find_by_id_returns_none(self, mock_get_conn):
        mock_connection(mock_get_conn, first=None)

        assert await NotificationLedger().find_by_id(7) is None

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_find_for_user(self, mock_get_conn):
        mock_connection(
            mock_get_conn, all_rows=[make_row(id=9), make_row(id=8, status="sent")]
        )

        records = await NotificationLedger().find_for_user(
            42, kind=NotificationKind.appointment_reminder
        )

        assert [r.id for r in records] == [9, 8]
        assert records[1].status == NotificationStatus.sent


class TestCountForUser:
    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_all_time_count_by_default(self, mock_get_conn):
        mock_conn = mock_connection(mock_get_conn, scalar=4)

        count = await NotificationLedger().count_for_user(42)

        assert count == 4
        assert "created_at" not in str(mock_conn.execute.call_args[0][0])

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_window_filters_on_created_at(self, mock_get_conn):
        mock_conn = mock_connection(mock_get_conn, scalar=2)

        count = await NotificationLedger(rate_limit_window=timedelta(hours=1)).count_for_user(42)

        assert count == 2
        assert "notifications.created_at >=" in str(mock_conn.execute.call_args[0][0])

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_none_counts_as_zero(self, mock_get_conn):
        mock_connection(mock_get_conn, scalar=None)

        assert await NotificationLedger().count_for_user(42) == 0

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_database_error_becomes_storage_error(self, mock_get_conn):
        mock_conn = mock_connection(mock_get_conn)
        mock_conn.execute.side_effect = db_down()

        with pytest.raises(StorageError):
            await NotificationLedger().count_for_user(42)


class TestHasReminderAlreadySent:
    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_true_when_any_reminder_on_record(self, mock_get_conn):
        mock_conn = mock_connection(mock_get_conn, first=(7,))

        assert await NotificationLedger().has_reminder_already_sent(5) is True
        values = bound_values(mock_conn.execute.call_args[0][0])
        assert NotificationKind.appointment_reminder in values
        for status in NotificationStatus:
            assert status in values

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_false_when_none(self, mock_get_conn):
        mock_connection(mock_get_conn, first=None)

        assert await NotificationLedger().has_reminder_already_sent(5) is False

    @pytest.mark.asyncio
    @patch("reminders.database.get_connection")
    async def test_database_error_becomes_storage_error(self, mock_get_conn):
        mock_conn = mock_connection(mock_get_conn)
        mock_conn.execute.side_effect = db_down()

        with pytest.raises(StorageError):
            await NotificationLedger().has_reminder_already_sent(5)
