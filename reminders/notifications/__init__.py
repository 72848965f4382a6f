"""
Notification and reminder pipeline.

Public API:
    NotificationLedger - durable record of notification attempts
    NotificationDispatcher.dispatch(request) - rate-limit, record, deliver
    ReminderBatchProcessor.run_once(date) - remind everyone booked on a date
    SchedulerSupervisor - daily trigger, manual trigger, status and health
"""

from .batch import ReminderBatchProcessor, ReminderRunStats, ReminderStatistics
from .dispatcher import (
    AppointmentDetails,
    DispatchRequest,
    DispatchResult,
    NotificationDispatcher,
)
from .errors import (
    AppointmentFetchError,
    InvalidScheduleError,
    NotFoundError,
    NotInitializedError,
    ReminderError,
    RunInProgressError,
    StorageError,
    TransportError,
)
from .ledger import NotificationDraft, NotificationLedger, NotificationRecord
from .scheduler import SchedulerState, SchedulerSupervisor

__all__ = [
    # Ledger
    "NotificationLedger",
    "NotificationDraft",
    "NotificationRecord",
    # Dispatch
    "NotificationDispatcher",
    "DispatchRequest",
    "DispatchResult",
    "AppointmentDetails",
    # Reminders
    "ReminderBatchProcessor",
    "ReminderRunStats",
    "ReminderStatistics",
    "SchedulerSupervisor",
    "SchedulerState",
    # Errors
    "ReminderError",
    "NotInitializedError",
    "RunInProgressError",
    "InvalidScheduleError",
    "StorageError",
    "NotFoundError",
    "TransportError",
    "AppointmentFetchError",
]
