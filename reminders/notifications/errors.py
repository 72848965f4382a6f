"""Exceptions raised by the notification and reminder pipeline."""


class ReminderError(Exception):
    """Base class for reminder pipeline errors."""


class NotInitializedError(ReminderError):
    """A scheduler control method was called before initialize()."""


class RunInProgressError(ReminderError):
    """A reminder batch run is already in flight."""


class InvalidScheduleError(ReminderError):
    """The configured cron expression or timezone cannot be used."""


class StorageError(ReminderError):
    """A notification ledger read or write failed."""


class NotFoundError(StorageError):
    """The requested notification record does not exist."""


class TransportError(ReminderError):
    """Mail delivery failed, was rejected, or timed out."""


class AppointmentFetchError(ReminderError):
    """The appointment list for a reminder run could not be loaded."""
