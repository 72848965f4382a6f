"""
Operational clock and timezone formatting.

All reminder logic runs against one fixed operational timezone (the
government offices' local time). The Clock is injected everywhere "now" or
"tomorrow" is needed so tests can pin time.
"""

from datetime import date, datetime, time, timedelta

import pytz

from .config import DEFAULT_TIMEZONE

# Friendly labels for zones used in citizen-facing text
TIMEZONE_LABELS = {
    "Asia/Colombo": "Sri Lanka Time",
}


class Clock:
    """Supplies "now", "today" and "tomorrow" in the operational timezone."""

    def __init__(self, tz_name: str = DEFAULT_TIMEZONE):
        # Raises pytz.UnknownTimeZoneError for bad names
        self.tz = pytz.timezone(tz_name)
        self.tz_name = tz_name

    def now(self) -> datetime:
        return datetime.now(pytz.UTC).astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def tomorrow(self) -> date:
        return self.today() + timedelta(days=1)


def timezone_label(tz_name: str) -> str:
    """Human label for a zone, e.g. "Sri Lanka Time" for Asia/Colombo."""
    return TIMEZONE_LABELS.get(tz_name, tz_name)


def _format_clock_time(value: time | str | None) -> str:
    if value is None:
        return "TBD"
    if isinstance(value, time):
        return value.strftime("%H:%M")
    return str(value)


def format_appointment_datetime(
    slot_date: date | None,
    start_time: time | str | None,
    end_time: time | str | None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> str:
    """
    Format a timeslot for notification text.

    Args:
        slot_date: Calendar date of the slot (already in the operational zone)
        start_time: Slot start (time or "HH:MM[:SS]" string)
        end_time: Slot end
        tz_name: Operational timezone name, used for the trailing label

    Returns:
        Formatted string like "Monday, January 15, 2024 at 09:00 - 09:30 (Sri Lanka Time)",
        or "Date/Time TBD" when there is no slot date.
    """
    if slot_date is None:
        return "Date/Time TBD"

    day_str = f"{slot_date:%A, %B} {slot_date.day}, {slot_date.year}"  # "January 9" not "January 09"
    start_str = _format_clock_time(start_time)
    end_str = _format_clock_time(end_time)

    return f"{day_str} at {start_str} - {end_str} ({timezone_label(tz_name)})"


def format_timestamp(dt: datetime | None, tz_name: str = DEFAULT_TIMEZONE) -> str | None:
    """
    Format an instant as "YYYY-MM-DD HH:MM:SS" in the operational timezone.

    Naive datetimes are treated as UTC. Returns None for None.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)

    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC

    return dt.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S")
