"""Tests for wiring the production reminder service."""

import pytest

from reminders import build_reminder_service
from reminders.config import OVERLAP_QUEUE, ReminderSettings
from reminders.notifications.channels.email import SendGridMailTransport
from reminders.notifications.errors import InvalidScheduleError


class TestBuildReminderService:
    def test_settings_flow_into_collaborators(self):
        settings = ReminderSettings(
            cron_schedule="30 8 * * *",
            timezone="UTC",
            rate_limit=3,
            send_timeout=1.5,
            overlap_policy=OVERLAP_QUEUE,
            max_workers=4,
        )

        service = build_reminder_service(settings)

        assert isinstance(service.dispatcher.transport, SendGridMailTransport)
        assert service.dispatcher.transport.http_timeout == 1.5
        assert service.dispatcher.rate_limit == 3
        assert service.dispatcher.send_timeout == 1.5
        assert service.processor.max_workers == 4
        assert service.processor.clock.tz_name == "UTC"
        assert service.supervisor.cron_schedule == "30 8 * * *"
        assert service.supervisor.overlap_policy == OVERLAP_QUEUE

    def test_one_ledger_shared_by_pipeline(self):
        service = build_reminder_service(ReminderSettings())

        assert service.dispatcher.ledger is service.ledger
        assert service.processor.ledger is service.ledger
        assert service.processor.store.ledger is service.ledger
        assert service.supervisor.processor is service.processor

    def test_supervisor_starts_uninitialized(self):
        service = build_reminder_service(ReminderSettings())

        assert service.supervisor.get_status().is_initialized is False

    def test_unknown_timezone_is_a_schedule_error(self):
        with pytest.raises(InvalidScheduleError, match="Mars/Olympus"):
            build_reminder_service(ReminderSettings(timezone="Mars/Olympus"))
