"""
Notification ledger - durable record of every notification attempt.

Records are created as "queued" before the transport is called and then
moved to exactly one terminal status ("sent" or "failed"). Nothing here
deletes records; resends and clean-up are operator actions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from reminders.enums import NotificationChannel, NotificationKind, NotificationStatus
from reminders.notifications.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = (NotificationStatus.sent, NotificationStatus.failed)


@dataclass
class NotificationDraft:
    """Fields supplied by the caller when creating a record."""

    user_id: int
    kind: NotificationKind
    message: str
    appointment_id: int | None = None
    channel: NotificationChannel = NotificationChannel.email


@dataclass
class NotificationRecord:
    """A persisted notification attempt."""

    id: int
    user_id: int
    kind: NotificationKind
    channel: NotificationChannel
    message: str
    status: NotificationStatus
    appointment_id: int | None = None
    sent_at: datetime | None = None
    error_detail: str | None = None

    @classmethod
    def from_row(cls, row) -> "NotificationRecord":
        """Build a record from a notifications table row mapping."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            appointment_id=row["appointment_id"],
            kind=NotificationKind(row["type"]),
            channel=NotificationChannel(row["method"]),
            message=row["message"],
            status=NotificationStatus(row["status"]),
            sent_at=row["sent_at"],
            error_detail=row["error_message"],
        )


class NotificationLedger:
    """
    SQLAlchemy-backed store for notification records.

    Every database error surfaces as StorageError so callers can decide how
    to degrade without knowing about SQLAlchemy.

    Args:
        rate_limit_window: If set, count_for_user() only counts records created
            within this window. None counts every record on file for the user.
    """

    def __init__(self, rate_limit_window: timedelta | None = None):
        self.rate_limit_window = rate_limit_window

    async def create(self, draft: NotificationDraft) -> NotificationRecord:
        """Persist a new record in "queued" status."""
        from sqlalchemy import insert
        from reminders.database import get_transaction
        from reminders.tables import notifications

        try:
            async with get_transaction() as conn:
                result = await conn.execute(
                    insert(notifications)
                    .values(
                        user_id=draft.user_id,
                        appointment_id=draft.appointment_id,
                        type=draft.kind,
                        method=draft.channel,
                        message=draft.message,
                        status=NotificationStatus.queued,
                    )
                    .returning(notifications)
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create notification: {e}") from e

        if row is None:
            raise StorageError("Failed to create notification: no row returned")

        return NotificationRecord.from_row(row)

    async def update_status(
        self,
        notification_id: int,
        status: NotificationStatus,
        sent_at: datetime | None = None,
        error_detail: str | None = None,
    ) -> NotificationRecord:
        """
        Move a record to a new status.

        Raises:
            NotFoundError: No record has this id
            StorageError: The update could not be written
        """
        from sqlalchemy import update
        from reminders.database import get_transaction
        from reminders.tables import notifications

        values = {"status": status}
        if sent_at is not None:
            values["sent_at"] = sent_at
        if error_detail is not None:
            values["error_message"] = error_detail

        try:
            async with get_transaction() as conn:
                result = await conn.execute(
                    update(notifications)
                    .where(notifications.c.id == notification_id)
                    .values(**values)
                    .returning(notifications)
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to update notification {notification_id}: {e}"
            ) from e

        if row is None:
            raise NotFoundError(f"Notification {notification_id} not found")

        return NotificationRecord.from_row(row)

    async def mark_as_sent(self, notification_id: int) -> NotificationRecord:
        return await self.update_status(
            notification_id,
            NotificationStatus.sent,
            sent_at=datetime.now(timezone.utc),
        )

    async def mark_as_failed(
        self, notification_id: int, error_detail: str | None = None
    ) -> NotificationRecord:
        return await self.update_status(
            notification_id, NotificationStatus.failed, error_detail=error_detail
        )

    async def find_by_id(self, notification_id: int) -> NotificationRecord | None:
        from sqlalchemy import select
        from reminders.database import get_connection
        from reminders.tables import notifications

        try:
            async with get_connection() as conn:
                result = await conn.execute(
                    select(notifications).where(notifications.c.id == notification_id)
                )
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to find notification: {e}") from e

        return NotificationRecord.from_row(row) if row else None

    async def find_for_user(
        self,
        user_id: int,
        kind: NotificationKind | None = None,
        status: NotificationStatus | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[NotificationRecord]:
        """List a user's notifications, newest first."""
        from sqlalchemy import select
        from reminders.database import get_connection
        from reminders.tables import notifications

        query = select(notifications).where(notifications.c.user_id == user_id)
        if kind is not None:
            query = query.where(notifications.c.type == kind)
        if status is not None:
            query = query.where(notifications.c.status == status)
        query = query.order_by(notifications.c.id.desc()).limit(limit).offset(offset)

        try:
            async with get_connection() as conn:
                result = await conn.execute(query)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to find notifications for user: {e}") from e

        return [NotificationRecord.from_row(row) for row in rows]

    async def count_for_user(self, user_id: int, since: datetime | None = None) -> int:
        """
        Count notifications on record for a user (the rate-limit numerator).

        With no `since` and no rate_limit_window this is an all-time count,
        which makes the limit a lifetime cap rather than a rolling one.
        """
        from sqlalchemy import func, select
        from reminders.database import get_connection
        from reminders.tables import notifications

        if since is None and self.rate_limit_window is not None:
            since = datetime.now(timezone.utc) - self.rate_limit_window

        query = (
            select(func.count())
            .select_from(notifications)
            .where(notifications.c.user_id == user_id)
        )
        if since is not None:
            query = query.where(notifications.c.created_at >= since)

        try:
            async with get_connection() as conn:
                result = await conn.execute(query)
                count = result.scalar()
        except SQLAlchemyError as e:
            raise StorageError(f"Rate limit count failed for user {user_id}: {e}") from e

        return count or 0

    async def has_reminder_already_sent(self, appointment_id: int) -> bool:
        """
        Check whether any reminder record exists for an appointment.

        Queued records count so an in-flight reminder is not duplicated, and
        failed ones count too: re-sending them is an explicit operator resend.
        """
        from sqlalchemy import and_, select
        from reminders.database import get_connection
        from reminders.tables import notifications

        try:
            async with get_connection() as conn:
                result = await conn.execute(
                    select(notifications.c.id)
                    .where(
                        and_(
                            notifications.c.appointment_id == appointment_id,
                            notifications.c.type == NotificationKind.appointment_reminder,
                            notifications.c.status.in_(
                                [NotificationStatus.queued, *TERMINAL_STATUSES]
                            ),
                        )
                    )
                    .limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as e:
            raise StorageError(
                f"Reminder lookup failed for appointment {appointment_id}: {e}"
            ) from e
