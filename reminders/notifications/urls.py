"""URL builder utilities for notification templates."""

from urllib.parse import urlencode

from reminders.config import get_frontend_url


def build_appointment_url(appointment_id: int) -> str:
    """Build URL to a citizen's appointment detail page."""
    base = get_frontend_url()
    return f"{base}/appointments/{appointment_id}"


def build_services_url() -> str:
    """Build URL to the service catalogue (for re-booking)."""
    base = get_frontend_url()
    return f"{base}/services"


def build_reset_password_url(token: str) -> str:
    """Build URL to the password reset page for a reset token."""
    base = get_frontend_url()
    return f"{base}/reset-password?{urlencode({'token': token})}"
