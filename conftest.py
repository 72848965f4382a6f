"""Root pytest configuration.

Loads .env files and provides in-memory stand-ins for the reminder
pipeline's collaborators (ledger, mail transport, appointment store, clock),
so tests never touch Postgres, SendGrid or the real time of day.
"""

import asyncio
from datetime import date, datetime, time
from pathlib import Path

import pytest
import pytz
from dotenv import load_dotenv

from reminders.appointments import AppointmentSnapshot, Contact, Timeslot
from reminders.enums import NotificationKind, NotificationStatus
from reminders.notifications.errors import NotFoundError, StorageError
from reminders.notifications.ledger import NotificationRecord
from reminders.timezone import Clock

# Load environment variables before tests run
_root = Path(__file__).parent
load_dotenv(_root / ".env")
load_dotenv(_root / ".env.local", override=True)


# =============================================================================
# Fakes
# =============================================================================


class FrozenClock(Clock):
    """Clock pinned to a fixed instant."""

    def __init__(self, now: datetime, tz_name: str = "Asia/Colombo"):
        super().__init__(tz_name)
        self._now = now.astimezone(self.tz)

    def now(self) -> datetime:
        return self._now


class FakeLedger:
    """In-memory notification ledger with switchable failures."""

    def __init__(self):
        self.records: dict[int, NotificationRecord] = {}
        self.prior_counts: dict[int, int] = {}
        self.fail_create = False
        self.fail_update = False
        self.fail_count = False
        self.fail_lookup_for: set[int] = set()
        self._next_id = 1

    async def create(self, draft) -> NotificationRecord:
        if self.fail_create:
            raise StorageError("insert failed")
        record = NotificationRecord(
            id=self._next_id,
            user_id=draft.user_id,
            appointment_id=draft.appointment_id,
            kind=draft.kind,
            channel=draft.channel,
            message=draft.message,
            status=NotificationStatus.queued,
        )
        self.records[record.id] = record
        self._next_id += 1
        return record

    async def update_status(self, notification_id, status, sent_at=None, error_detail=None):
        if self.fail_update:
            raise StorageError("update failed")
        record = self.records.get(notification_id)
        if record is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        record.status = status
        record.sent_at = sent_at
        record.error_detail = error_detail
        return record

    async def mark_as_sent(self, notification_id):
        return await self.update_status(
            notification_id, NotificationStatus.sent, sent_at=datetime.now(pytz.UTC)
        )

    async def mark_as_failed(self, notification_id, error_detail=None):
        return await self.update_status(
            notification_id, NotificationStatus.failed, error_detail=error_detail
        )

    async def count_for_user(self, user_id, since=None) -> int:
        if self.fail_count:
            raise StorageError("count failed")
        existing = sum(1 for r in self.records.values() if r.user_id == user_id)
        return existing + self.prior_counts.get(user_id, 0)

    async def has_reminder_already_sent(self, appointment_id) -> bool:
        if appointment_id in self.fail_lookup_for:
            raise StorageError("lookup failed")
        return any(
            r.appointment_id == appointment_id
            and r.kind == NotificationKind.appointment_reminder
            for r in self.records.values()
        )

    def reminders_for(self, appointment_id) -> list[NotificationRecord]:
        return [
            r
            for r in self.records.values()
            if r.appointment_id == appointment_id
            and r.kind == NotificationKind.appointment_reminder
        ]


class FakeMailTransport:
    """Records sent mail; can reject, raise or hang for chosen recipients."""

    def __init__(self):
        self.sent: list[dict] = []
        self.reject: set[str] = set()
        self.raise_for: set[str] = set()
        self.hang_for: set[str] = set()

    async def send(self, to, subject, text_body, html_body=None) -> bool:
        if to in self.hang_for:
            await asyncio.sleep(3600)
        if to in self.raise_for:
            raise ConnectionError(f"connection reset sending to {to}")
        if to in self.reject:
            return False
        self.sent.append(
            {"to": to, "subject": subject, "text_body": text_body, "html_body": html_body}
        )
        return True

    def recipients(self) -> list[str]:
        return [message["to"] for message in self.sent]


class FakeAppointmentStore:
    """Appointments keyed by date; `gate` lets a test hold a fetch open."""

    def __init__(self):
        self.by_date: dict[date, list[AppointmentSnapshot]] = {}
        self.fail = False
        self.gate: asyncio.Event | None = None
        self.fetch_started = asyncio.Event()
        self.fetches: list[date] = []

    def add(self, target_date: date, *appointments: AppointmentSnapshot) -> None:
        self.by_date.setdefault(target_date, []).extend(appointments)

    async def find_appointments_for_reminder(self, target_date):
        self.fetches.append(target_date)
        self.fetch_started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("database unavailable")
        return list(self.by_date.get(target_date, []))


# =============================================================================
# Fixtures
# =============================================================================

# 2024-01-14 20:00 in Colombo (UTC+5:30); "tomorrow" is Monday 2024-01-15
FROZEN_NOW = pytz.UTC.localize(datetime(2024, 1, 14, 14, 30))
TOMORROW = date(2024, 1, 15)


@pytest.fixture
def clock():
    return FrozenClock(FROZEN_NOW)


@pytest.fixture
def tomorrow():
    return TOMORROW


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def transport():
    return FakeMailTransport()


@pytest.fixture
def store():
    return FakeAppointmentStore()


@pytest.fixture
def make_appointment():
    """Factory for AppointmentSnapshot with a citizen and optional officer."""

    def _make(
        appointment_id: int,
        with_officer: bool = True,
        slot_date: date | None = TOMORROW,
        service_name: str | None = "Passport Renewal",
    ) -> AppointmentSnapshot:
        citizen = Contact(
            user_id=1000 + appointment_id,
            email=f"citizen{appointment_id}@example.com",
            first_name="Nimal",
            last_name=f"Perera{appointment_id}",
            phone_number="+94771234567",
        )
        officer = None
        if with_officer:
            officer = Contact(
                user_id=2000 + appointment_id,
                email=f"officer{appointment_id}@gov.example.lk",
                first_name="Kamala",
                last_name="Silva",
            )
        timeslot = None
        if slot_date is not None:
            timeslot = Timeslot(
                slot_date=slot_date, start_time=time(9, 0), end_time=time(9, 30)
            )
        return AppointmentSnapshot(
            appointment_id=appointment_id,
            booking_reference=f"BK-{appointment_id:06d}",
            citizen=citizen,
            officer=officer,
            service_id=7,
            service_name=service_name,
            department_id=3,
            department_name="Department of Immigration",
            timeslot=timeslot,
        )

    return _make
