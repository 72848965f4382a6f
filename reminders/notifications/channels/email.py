"""SendGrid email delivery channel."""

import asyncio
import html
import logging
import os
import re
from dataclasses import dataclass

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from reminders.notifications.errors import TransportError

logger = logging.getLogger(__name__)


SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY")
FROM_EMAIL = os.environ.get("FROM_EMAIL", "noreply@gov-appointments.lk")
FROM_NAME = os.environ.get("FROM_NAME", "Government Appointment Booking System")

# Regex to match markdown links: [text](url)
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")

_client: SendGridAPIClient | None = None


@dataclass
class EmailMessage:
    """Email message data."""

    to_email: str
    subject: str
    body: str
    html_body: str | None = None


def markdown_to_html(text: str, extra_html: str = "") -> str:
    """
    Convert markdown-style links to HTML and wrap in basic HTML structure.

    Converts [text](url) to <a href="url">text</a> and preserves line breaks.
    The text is HTML-escaped first, since it carries citizen-supplied fields.
    `extra_html` is appended verbatim after the converted body (used for the
    booking QR code image).
    """
    # Convert markdown links to HTML links
    html_body = MARKDOWN_LINK_PATTERN.sub(r'<a href="\2">\1</a>', html.escape(text))

    # Convert newlines to <br> for proper formatting
    html_body = html_body.replace("\n", "<br>\n")

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: Arial, Helvetica, sans-serif; line-height: 1.5; color: #333;">
{html_body}{extra_html}
</body>
</html>"""


def markdown_to_plain_text(text: str) -> str:
    """
    Convert markdown-style links to plain text with URL in parentheses.

    Converts [text](url) to text (url) for plain text email fallback.
    """
    return MARKDOWN_LINK_PATTERN.sub(r"\1 (\2)", text)


def _get_sendgrid_client() -> SendGridAPIClient | None:
    """Get or create SendGrid client singleton."""
    global _client
    if _client is None and SENDGRID_API_KEY:
        _client = SendGridAPIClient(SENDGRID_API_KEY)
    return _client


def send_email(message: EmailMessage, timeout: float | None = None) -> bool:
    """
    Send an email via SendGrid (blocking).

    The body can contain markdown-style links [text](url). The plain-text part
    has them flattened; the HTML part uses message.html_body when given,
    otherwise the converted body.
    `timeout` bounds the underlying HTTP request in seconds.

    Returns:
        True if SendGrid accepted the message for delivery

    Raises:
        TransportError: SendGrid is not configured or the API call failed
    """
    client = _get_sendgrid_client()
    if not client:
        raise TransportError("SendGrid not configured (SENDGRID_API_KEY not set)")

    if timeout is not None:
        # python_http_client passes this to urlopen for every request
        client.client.timeout = timeout

    mail = Mail(
        from_email=(FROM_EMAIL, FROM_NAME),
        to_emails=message.to_email,
        subject=message.subject,
        plain_text_content=markdown_to_plain_text(message.body),
        html_content=message.html_body or markdown_to_html(message.body),
    )

    try:
        response = client.send(mail)
    except Exception as e:
        raise TransportError(f"SendGrid send to {message.to_email} failed: {e}") from e

    return response.status_code in (200, 201, 202)


class SendGridMailTransport:
    """
    Mail transport used by the notification dispatcher.

    send() runs the blocking SendGrid call in a worker thread so the event
    loop (and the scheduler living on it) is never blocked by the network.
    `http_timeout` bounds each SendGrid HTTP request; the composition root
    sets it to the dispatcher timeout.
    """

    def __init__(self, http_timeout: float | None = None):
        self.http_timeout = http_timeout

    async def send(
        self,
        to: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
    ) -> bool:
        message = EmailMessage(
            to_email=to, subject=subject, body=text_body, html_body=html_body
        )
        accepted = await asyncio.to_thread(send_email, message, self.http_timeout)
        if accepted:
            logger.info(f"Email accepted for delivery to {to}")
        else:
            logger.warning(f"SendGrid did not accept email to {to}")
        return accepted
