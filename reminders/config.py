"""
Centralized configuration for the appointment reminder service.

Values come from environment variables. The composition root (main.py) loads
.env.local / .env before anything here is read, and the reminder pipeline
receives a ReminderSettings snapshot instead of reading os.environ itself.
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


DEFAULT_CRON_SCHEDULE = "0 9 * * *"  # Daily at 9:00 AM
DEFAULT_TIMEZONE = "Asia/Colombo"
DEFAULT_RATE_LIMIT = 10
DEFAULT_SEND_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_WORKERS = 1

OVERLAP_REJECT = "reject"
OVERLAP_QUEUE = "queue"
OVERLAP_POLICIES = (OVERLAP_REJECT, OVERLAP_QUEUE)


def is_dev_mode() -> bool:
    """Check if running in development mode (DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running in the production environment."""
    return os.getenv("APP_ENV", "").lower() == "production"


def get_api_port() -> int:
    """Get API server port from env or default."""
    return _get_int("API_PORT", 8000)


def get_frontend_url() -> str:
    """Get the citizen-facing frontend URL used in email links."""
    return os.environ.get("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def is_scheduler_disabled() -> bool:
    """Check if the daily reminder trigger should stay disarmed at startup."""
    return os.getenv("DISABLE_REMINDER_SCHEDULER", "").lower() in ("true", "1", "yes")


def _get_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using {default}")
        return default


@dataclass(frozen=True)
class ReminderSettings:
    """Settings for the reminder pipeline (trigger, limits, timeouts)."""

    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    timezone: str = DEFAULT_TIMEZONE
    rate_limit: int = DEFAULT_RATE_LIMIT
    send_timeout: float = DEFAULT_SEND_TIMEOUT_SECONDS
    overlap_policy: str = OVERLAP_REJECT
    max_workers: int = DEFAULT_MAX_WORKERS


def get_reminder_settings() -> ReminderSettings:
    """
    Build ReminderSettings from the environment.

    Malformed numbers fall back to their defaults. The cron expression and
    timezone are passed through untouched; SchedulerSupervisor.initialize()
    validates them and refuses to start if they are invalid.
    """
    overlap_policy = os.environ.get("REMINDER_OVERLAP_POLICY", OVERLAP_REJECT).lower()
    if overlap_policy not in OVERLAP_POLICIES:
        logger.warning(
            f"Unknown REMINDER_OVERLAP_POLICY={overlap_policy!r}, using {OVERLAP_REJECT!r}"
        )
        overlap_policy = OVERLAP_REJECT

    return ReminderSettings(
        cron_schedule=os.environ.get("REMINDER_CRON_SCHEDULE", DEFAULT_CRON_SCHEDULE),
        timezone=os.environ.get("REMINDER_TIMEZONE", DEFAULT_TIMEZONE),
        rate_limit=max(_get_int("NOTIFICATION_RATE_LIMIT", DEFAULT_RATE_LIMIT), 0),
        send_timeout=_get_float(
            "MAIL_SEND_TIMEOUT_SECONDS", DEFAULT_SEND_TIMEOUT_SECONDS
        ),
        overlap_policy=overlap_policy,
        max_workers=max(_get_int("REMINDER_MAX_WORKERS", DEFAULT_MAX_WORKERS), 1),
    )


# Environment variables checked at startup
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("SENDGRID_API_KEY", "SendGrid API key for reminder emails", False),
    ("FROM_EMAIL", "Sender address for notification emails", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if is_production():
                errors.append(f"  ✗ {name}: Not set ({description})")
            elif required_in_dev or not in_dev:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        for error in errors:
            logger.error(error)
        return False, warnings

    return True, warnings
