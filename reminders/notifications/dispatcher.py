"""
Notification dispatcher - records each notification and hands it to the mail transport.

Every dispatch follows the same steps:
    1. rate-limit check against the ledger (fails open)
    2. ledger record created in "queued"
    3. one transport call, bounded by a timeout
    4. record moved to "sent" or "failed" (best effort)

dispatch() never raises; the outcome is reported in DispatchResult.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass

from reminders.config import DEFAULT_RATE_LIMIT, DEFAULT_SEND_TIMEOUT_SECONDS
from reminders.enums import NotificationChannel, NotificationKind
from reminders.notifications.channels.email import markdown_to_html
from reminders.notifications.errors import StorageError, TransportError
from reminders.notifications.ledger import NotificationDraft
from reminders.notifications.qr import (
    build_confirmation_payload,
    qr_image_tag,
    render_qr_data_uri,
)
from reminders.notifications.templates import get_message
from reminders.notifications.urls import (
    build_appointment_url,
    build_reset_password_url,
    build_services_url,
)

logger = logging.getLogger(__name__)


RATE_LIMITED = "rate_limited"
PERSIST_ERROR = "persist_error"
TRANSPORT_ERROR = "transport_error"


@dataclass
class DispatchRequest:
    """One notification to one recipient."""

    user_id: int
    recipient_email: str
    subject: str
    text_body: str
    kind: NotificationKind = NotificationKind.generic
    appointment_id: int | None = None
    html_body: str | None = None
    summary: str | None = None  # Stored on the ledger record; defaults to text_body


@dataclass
class DispatchResult:
    sent: bool
    reason: str | None = None
    notification_id: int | None = None


@dataclass
class AppointmentDetails:
    """Display fields shared by the appointment email templates."""

    appointment_id: int
    booking_reference: str
    service_name: str = "Unknown Service"
    department_name: str = "Unknown Department"
    date_time: str = "Date/Time TBD"
    officer_name: str = "To be assigned"

    def as_context(self) -> dict:
        return {
            "booking_reference": self.booking_reference,
            "service_name": self.service_name,
            "department_name": self.department_name,
            "date_time": self.date_time,
            "officer_name": self.officer_name,
            "appointment_url": build_appointment_url(self.appointment_id),
        }


class NotificationDispatcher:
    """
    Sends notifications through a mail transport, keeping the ledger in step.

    Args:
        ledger: NotificationLedger (or anything with create / mark_as_sent /
            mark_as_failed / count_for_user)
        transport: Object with async send(to, subject, text_body, html_body) -> bool
        rate_limit: Maximum notifications on record per user before new ones
            are refused
        send_timeout: Seconds allowed for a single transport call
    """

    def __init__(
        self,
        ledger,
        transport,
        rate_limit: int = DEFAULT_RATE_LIMIT,
        send_timeout: float = DEFAULT_SEND_TIMEOUT_SECONDS,
    ):
        self.ledger = ledger
        self.transport = transport
        self.rate_limit = rate_limit
        self.send_timeout = send_timeout
        self._user_locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _is_rate_limited(self, user_id: int) -> bool:
        try:
            count = await self.ledger.count_for_user(user_id)
        except Exception as e:
            # Fail open: a broken counter must not stop notifications
            logger.warning(
                f"Rate limit check failed for user {user_id}: {e}, allowing notification"
            )
            return False
        return count >= self.rate_limit

    async def _deliver(self, request: DispatchRequest) -> str | None:
        """Make the single transport call. Returns an error description, or None on success."""
        try:
            accepted = await asyncio.wait_for(
                self.transport.send(
                    request.recipient_email,
                    request.subject,
                    request.text_body,
                    request.html_body,
                ),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            return f"transport timed out after {self.send_timeout}s"
        except TransportError as e:
            return str(e)
        except Exception as e:
            return f"{type(e).__name__}: {e}"

        if not accepted:
            return "transport did not accept the message"
        return None

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """
        Persist and deliver one notification.

        Returns:
            DispatchResult(sent=True) on delivery, otherwise sent=False with
            reason "rate_limited", "persist_error" or "transport_error".
        """
        # Concurrent dispatches to one user must see each other's records
        async with self._user_locks[request.user_id]:
            if await self._is_rate_limited(request.user_id):
                logger.warning(f"Rate limit exceeded for user {request.user_id}")
                return DispatchResult(sent=False, reason=RATE_LIMITED)

            try:
                record = await self.ledger.create(
                    NotificationDraft(
                        user_id=request.user_id,
                        appointment_id=request.appointment_id,
                        kind=request.kind,
                        channel=NotificationChannel.email,
                        message=request.summary or request.text_body,
                    )
                )
            except Exception as e:
                logger.error(
                    f"Could not record {request.kind.value} notification for user "
                    f"{request.user_id}: {e}"
                )
                return DispatchResult(sent=False, reason=PERSIST_ERROR)

        error = await self._deliver(request)

        # Status bookkeeping is best effort; the delivery outcome stands either way
        try:
            if error is None:
                await self.ledger.mark_as_sent(record.id)
            else:
                await self.ledger.mark_as_failed(record.id, error)
        except StorageError as e:
            logger.error(f"Failed to update status of notification {record.id}: {e}")
        except Exception as e:
            logger.error(
                f"Unexpected error updating notification {record.id}: {e}",
                exc_info=True,
            )

        if error is None:
            logger.info(
                f"Notification {record.id} sent successfully to {request.recipient_email}"
            )
            return DispatchResult(sent=True, notification_id=record.id)

        logger.error(
            f"Failed to send notification {record.id} to {request.recipient_email}: {error}"
        )
        return DispatchResult(
            sent=False, reason=TRANSPORT_ERROR, notification_id=record.id
        )

    # =========================================================================
    # Convenience senders
    # =========================================================================

    def _build_request(
        self,
        message_type: str,
        kind: NotificationKind,
        user_id: int,
        email: str,
        context: dict,
        appointment_id: int | None = None,
    ) -> DispatchRequest:
        text_body = get_message(message_type, "email_body", context)
        return DispatchRequest(
            user_id=user_id,
            recipient_email=email,
            subject=get_message(message_type, "email_subject", context),
            text_body=text_body,
            html_body=markdown_to_html(text_body),
            summary=get_message(message_type, "summary", context),
            kind=kind,
            appointment_id=appointment_id,
        )

    async def send_appointment_reminder(
        self,
        user_id: int,
        email: str,
        name: str,
        details: AppointmentDetails,
    ) -> DispatchResult:
        request = self._build_request(
            "appointment_reminder",
            NotificationKind.appointment_reminder,
            user_id,
            email,
            {"name": name, **details.as_context()},
            appointment_id=details.appointment_id,
        )
        return await self.dispatch(request)

    async def send_appointment_confirmation(
        self,
        user_id: int,
        email: str,
        name: str,
        details: AppointmentDetails,
    ) -> DispatchResult:
        """
        Send a booking confirmation with an embedded QR code.

        If the QR code cannot be rendered the email goes out without it.
        """
        request = self._build_request(
            "appointment_confirmation",
            NotificationKind.appointment_confirmation,
            user_id,
            email,
            {"name": name, **details.as_context()},
            appointment_id=details.appointment_id,
        )

        try:
            payload = build_confirmation_payload(
                booking_reference=details.booking_reference,
                appointment_id=details.appointment_id,
                user_id=user_id,
                service_name=details.service_name,
                department_name=details.department_name,
                date_time=details.date_time,
            )
            qr_html = qr_image_tag(render_qr_data_uri(payload), details.booking_reference)
            request.html_body = markdown_to_html(request.text_body, extra_html=qr_html)
        except Exception as e:
            logger.warning(
                f"QR code generation failed for appointment {details.appointment_id}, "
                f"sending confirmation without it: {e}"
            )

        return await self.dispatch(request)

    async def send_appointment_cancellation(
        self,
        user_id: int,
        email: str,
        name: str,
        details: AppointmentDetails,
    ) -> DispatchResult:
        request = self._build_request(
            "appointment_cancellation",
            NotificationKind.appointment_cancellation,
            user_id,
            email,
            {"name": name, "services_url": build_services_url(), **details.as_context()},
            appointment_id=details.appointment_id,
        )
        return await self.dispatch(request)

    async def send_document_status_update(
        self,
        user_id: int,
        email: str,
        name: str,
        appointment_id: int,
        booking_reference: str,
        document_name: str,
        status: str,
        comments: str | None = None,
    ) -> DispatchResult:
        context = {
            "name": name,
            "document_name": document_name,
            "status": status,
            "status_title": status[:1].upper() + status[1:],
            "booking_reference": booking_reference,
            "comments_line": f"Comments: {comments}" if comments else "",
        }
        request = self._build_request(
            "document_status",
            NotificationKind.document_status,
            user_id,
            email,
            context,
            appointment_id=appointment_id,
        )
        return await self.dispatch(request)

    async def send_password_reset(
        self, user_id: int, email: str, reset_token: str
    ) -> DispatchResult:
        request = self._build_request(
            "password_reset",
            NotificationKind.generic,
            user_id,
            email,
            {"reset_url": build_reset_password_url(reset_token)},
        )
        return await self.dispatch(request)

    async def send_generic_notification(
        self,
        user_id: int,
        email: str,
        subject: str,
        message: str,
        html_body: str | None = None,
        appointment_id: int | None = None,
    ) -> DispatchResult:
        return await self.dispatch(
            DispatchRequest(
                user_id=user_id,
                recipient_email=email,
                subject=subject,
                text_body=message,
                html_body=html_body,
                kind=NotificationKind.generic,
                appointment_id=appointment_id,
            )
        )
